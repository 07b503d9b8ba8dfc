# mdm_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .mdm import (
    MergeLog,
    MergeLogStatus,
    MergeParticipation,
    SurvivorshipRule,
    SurvivorshipStrategy,
)
from .party import PARTY_FIELDS, Party, PartyStatus, PartyType

__all__ = [
    "db",
    "BaseModel",
    "Party",
    "PartyStatus",
    "PartyType",
    "PARTY_FIELDS",
    "SurvivorshipRule",
    "SurvivorshipStrategy",
    "MergeLog",
    "MergeLogStatus",
    "MergeParticipation",
]
