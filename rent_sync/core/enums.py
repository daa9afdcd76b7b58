"""Enums for listing and store row fields."""

from enum import Enum


class AgentRole(str, Enum):
    """Who published a listing."""

    BROKER = "broker"
    OWNER = "owner"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "AgentRole":
        """Parse a stored role value, falling back to UNKNOWN."""
        text = (value or "").strip().lower()
        for role in cls:
            if role.value == text:
                return role
        return cls.UNKNOWN


class RowStatus(str, Enum):
    """Lifecycle status of a persisted row."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"

    @classmethod
    def parse(cls, value: str | None) -> "RowStatus":
        """Parse a stored status cell. Anything but 'active' is inactive."""
        text = (value or "").strip().lower()
        if text == cls.ACTIVE.value.lower():
            return cls.ACTIVE
        return cls.INACTIVE
