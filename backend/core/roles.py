# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""
Session roles and what they may do.

A session's role is decided once, by which secret unlocked it, and is carried
in the JWT ``role`` claim.  The table below is the only place capabilities
are granted; the API checks it through ``require_capability`` and the client
consults the same table purely for UX.
"""

import enum
from typing import FrozenSet


class Role(str, enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Capability(str, enum.Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    EDIT_SETTINGS = "edit_settings"
    VIEW_FILES = "view_files"
    CREATE_NOTE = "create_note"
    EDIT_NOTE = "edit_note"
    DELETE_NOTE = "delete_note"
    SHARE_SECONDARY_SECRET = "share_secondary_secret"


ROLE_CAPABILITIES = {
    Role.PRIMARY: frozenset(Capability),
    Role.SECONDARY: frozenset({
        Capability.VIEW_FILES,
        Capability.CREATE_NOTE,
        Capability.EDIT_NOTE,
    }),
}


def resolve_role(role) -> FrozenSet[Capability]:
    """Capabilities of *role* (a :class:`Role` or its string value)."""
    return ROLE_CAPABILITIES[Role(role)]


def has_capability(role, capability) -> bool:
    return Capability(capability) in resolve_role(role)
