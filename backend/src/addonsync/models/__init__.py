"""
Database models for the AddonSync backend.

The sync engine reads these rows and writes only user auth keys, addon
manifest columns and account sync timestamps.
"""

from .account import SYNC_MODE_ADVANCED, SYNC_MODE_NORMAL, SYNC_MODES, Account
from .addon import Addon
from .base import Base, BaseModel
from .group import Group, GroupAddon
from .user import User


def register_all_models():
    """Import all models so Base.metadata knows every table."""
    return {
        "Account": Account,
        "User": User,
        "Addon": Addon,
        "Group": Group,
        "GroupAddon": GroupAddon,
    }


__all__ = [
    "SYNC_MODES",
    "SYNC_MODE_ADVANCED",
    "SYNC_MODE_NORMAL",
    "Account",
    "Addon",
    "Base",
    "BaseModel",
    "Group",
    "GroupAddon",
    "User",
    "register_all_models",
]
