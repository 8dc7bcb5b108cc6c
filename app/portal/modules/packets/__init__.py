"""
Client packets.

- Packets carry typed content keyed by packet_type and move through
  DRAFT / PUBLISHED / UNPUBLISHED / ARCHIVED
- Every content change appends an immutable version; restores append too
- Publishing notifies the client once the change has committed
"""
