"""
Feature modules live under this package.

Each module owns its routes and models and reuses the platform primitives
(auth, RBAC, audit, cache, storage, DB session).
"""
