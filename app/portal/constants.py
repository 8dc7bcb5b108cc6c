"""
Central constants for the wellness portal.
"""
from __future__ import annotations

from enum import StrEnum


class Population(StrEnum):
    GENERAL = "GENERAL"
    ATHLETE = "ATHLETE"
    YOUTH = "YOUTH"
    RECOVERY = "RECOVERY"
    PREGNANCY = "PREGNANCY"
    POSTPARTUM = "POSTPARTUM"
    OLDER_ADULT = "OLDER_ADULT"
    CHRONIC_CONDITION = "CHRONIC_CONDITION"


class AssessmentType(StrEnum):
    NUTRITION = "NUTRITION"
    TRAINING = "TRAINING"
    PERFORMANCE = "PERFORMANCE"
    YOUTH = "YOUTH"
    RECOVERY = "RECOVERY"
    LIFESTYLE = "LIFESTYLE"
    GENERAL = "GENERAL"


class PacketStatus(StrEnum):
    DRAFT = "DRAFT"
    UNPUBLISHED = "UNPUBLISHED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class PacketType(StrEnum):
    GENERAL = "GENERAL"
    NUTRITION = "NUTRITION"
    TRAINING = "TRAINING"
    ATHLETE_PERFORMANCE = "ATHLETE_PERFORMANCE"
    YOUTH = "YOUTH"
    RECOVERY = "RECOVERY"
    PREGNANCY = "PREGNANCY"
    POSTPARTUM = "POSTPARTUM"
    OLDER_ADULT = "OLDER_ADULT"


# Role keys (roles table). Staff roles may mutate packets and populations.
ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})
