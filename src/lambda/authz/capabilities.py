"""
Role -> capability tables.

Two scopes: the system role from the identity provider (user/admin) and the
role a member holds inside one club (member/admin/owner).
"""
from enum import Enum


class Capability(str, Enum):
    # system
    MANAGE_PLATFORM = "manage_platform"
    MANAGE_ALL_CLUBS = "manage_all_clubs"
    # club
    VIEW_CLUB_DETAILS = "view_club_details"
    VIEW_PUBLIC_MEMBERS = "view_public_members"
    LEAVE_CLUB = "leave_club"
    VIEW_CLUB_MEMBERS = "view_club_members"
    INVITE_MEMBERS = "invite_members"
    REMOVE_MEMBERS = "remove_members"
    MANAGE_JOIN_REQUESTS = "manage_join_requests"
    MANAGE_CLUB_CONTENT = "manage_club_content"
    MANAGE_CLUB_SETTINGS = "manage_club_settings"
    MANAGE_ADMINS = "manage_admins"


SYSTEM_USER = "user"
SYSTEM_ADMIN = "admin"

SYSTEM_CAPABILITIES = {
    SYSTEM_USER: frozenset(),
    SYSTEM_ADMIN: frozenset({Capability.MANAGE_PLATFORM, Capability.MANAGE_ALL_CLUBS}),
}

_MEMBER = frozenset({
    Capability.VIEW_CLUB_DETAILS,
    Capability.VIEW_PUBLIC_MEMBERS,
    Capability.LEAVE_CLUB,
})
_ADMIN = _MEMBER | {
    Capability.VIEW_CLUB_MEMBERS,
    Capability.INVITE_MEMBERS,
    Capability.REMOVE_MEMBERS,
    Capability.MANAGE_JOIN_REQUESTS,
    Capability.MANAGE_CLUB_CONTENT,
}
_OWNER = _ADMIN | {
    Capability.MANAGE_CLUB_SETTINGS,
    Capability.MANAGE_ADMINS,
}

CLUB_CAPABILITIES = {
    "member": _MEMBER,
    "admin": frozenset(_ADMIN),
    "owner": frozenset(_OWNER),
}


def to_capability(name):
    """Capability for a name or enum member; None when unknown."""
    try:
        return Capability(name)
    except ValueError:
        return None


def resolve_system_capabilities(role):
    """Capabilities of a system role. Unknown roles get none."""
    return SYSTEM_CAPABILITIES.get(role, frozenset())


def resolve_club_capabilities(club_role):
    return CLUB_CAPABILITIES.get(club_role, frozenset())


def is_system_capability(capability):
    return any(capability in caps for caps in SYSTEM_CAPABILITIES.values())
