"""Enumerations shared by the ORM models, schemas and services."""

import enum


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserTier(str, enum.Enum):
    """Membership tier; decides how many books a user may hold at once."""
    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"
    TIER_4 = "TIER_4"


class BookStatus(str, enum.Enum):
    """
    Availability of a book.

    AVAILABLE and LENT are driven by the loan lifecycle (lend/return).
    LOST is only ever set by an administrator through set_status.
    """
    AVAILABLE = "AVAILABLE"
    LENT = "LENT"
    LOST = "LOST"
