"""SQLAlchemy declarative base and CardStock models.

This package hosts the SQLAlchemy models used across the core.  It exposes a
single declarative ``Base`` class that other modules can import when creating
tables or writing migrations in Python.  Individual models live in dedicated
modules within this package.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models for convenience so callers can import them via
# ``from cardstock.models import Organization`` instead of touching private
# modules.
from .audit import AuditEntry
from .inventory import (
    CardCondition,
    GradingCompany,
    InventoryImage,
    InventoryItem,
    InventoryStatus,
    Transaction,
)
from .tenant import Invite, Membership, Organization, Profile, Role


__all__ = [
    "AuditEntry",
    "Base",
    "CardCondition",
    "GradingCompany",
    "InventoryImage",
    "InventoryItem",
    "InventoryStatus",
    "Invite",
    "Membership",
    "Organization",
    "Profile",
    "Role",
    "Transaction",
]
