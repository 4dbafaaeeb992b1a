"""Shared enums for models."""

from enum import IntEnum


class UserStatus(IntEnum):
    """Account status stored on the user row."""

    WAITING = 0  # waiting for verification, full access within the waiting period
    ACTIVATED = 1
    SUSPENDED = -1  # read-only
    DEACTIVATED = -2
