"""
Core module initialization.
Exports configuration, error taxonomy and actor types.
"""

from pos_core.core.actors import Actor, Capability, PermissionPolicy, Role, RolePolicy
from pos_core.core.config import EnvironmentMode, Settings, get_settings
from pos_core.core.errors import BadRequest, Conflict, Forbidden, NotFound, PosError

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "Actor",
    "Capability",
    "PermissionPolicy",
    "Role",
    "RolePolicy",
    "PosError",
    "BadRequest",
    "Conflict",
    "Forbidden",
    "NotFound",
]
