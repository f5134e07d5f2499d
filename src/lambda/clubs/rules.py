"""
Club, membership and invitation field rules: limits, status tables, typed patches, id generation.
"""
import secrets
import string
import time
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from urllib.parse import urlparse

from common import config
from common.errors import ErrorKind, ServiceError, validation_error

NAME_MIN_LENGTH = 1
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
CITY_MAX_LENGTH = 50
JOIN_MESSAGE_MAX_LENGTH = 500
REASON_MAX_LENGTH = 500

CLUB_ACTIVE = "active"
CLUB_SUSPENDED = "suspended"
CLUB_ARCHIVED = "archived"
CLUB_STATUSES = (CLUB_ACTIVE, CLUB_SUSPENDED, CLUB_ARCHIVED)

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"
ROLE_OWNER = "owner"
MEMBERSHIP_ROLES = (ROLE_MEMBER, ROLE_ADMIN, ROLE_OWNER)

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_REMOVED = "removed"
MEMBERSHIP_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_REMOVED)

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_DECLINED = "declined"
INVITATION_EXPIRED = "expired"
INVITATION_CANCELLED = "cancelled"
INVITATION_STATUSES = (
    INVITATION_PENDING, INVITATION_ACCEPTED, INVITATION_DECLINED, INVITATION_EXPIRED, INVITATION_CANCELLED,
)
# Owners are never invited; ownership comes only from creating the club.
INVITABLE_ROLES = (ROLE_MEMBER, ROLE_ADMIN)
INVITATION_MESSAGE_MAX_LENGTH = 500
INVITATION_EXPIRY_DAYS = 7

CLUB_STATUS_TRANSITIONS = {
    CLUB_ACTIVE: frozenset({CLUB_SUSPENDED, CLUB_ARCHIVED}),
    CLUB_SUSPENDED: frozenset({CLUB_ACTIVE, CLUB_ARCHIVED}),
    CLUB_ARCHIVED: frozenset(),
}

MEMBERSHIP_STATUS_TRANSITIONS = {
    STATUS_PENDING: frozenset({STATUS_ACTIVE, STATUS_REMOVED}),
    STATUS_ACTIVE: frozenset({STATUS_REMOVED}),
    STATUS_REMOVED: frozenset(),
}

INVITATION_STATUS_TRANSITIONS = {
    INVITATION_PENDING: frozenset({
        INVITATION_ACCEPTED, INVITATION_DECLINED, INVITATION_EXPIRED, INVITATION_CANCELLED,
    }),
    INVITATION_ACCEPTED: frozenset(),
    INVITATION_DECLINED: frozenset(),
    INVITATION_EXPIRED: frozenset(),
    INVITATION_CANCELLED: frozenset(),
}


class _Absent:
    """Marker for a patch field the caller did not supply."""

    def __repr__(self):
        return "ABSENT"

    def __bool__(self):
        return False


ABSENT = _Absent()


def _present(patch):
    return {f.name: getattr(patch, f.name) for f in fields(patch) if getattr(patch, f.name) is not ABSENT}


@dataclass(frozen=True)
class ClubPatch:
    """Club update. A field set to None clears an optional attribute."""
    name: object = ABSENT
    description: object = ABSENT
    city: object = ABSENT
    logoUrl: object = ABSENT
    status: object = ABSENT

    @classmethod
    def from_dict(cls, data):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in names})

    def present(self):
        return _present(self)


@dataclass(frozen=True)
class MembershipPatch:
    role: object = ABSENT
    status: object = ABSENT
    processedBy: object = ABSENT
    processedAt: object = ABSENT
    reason: object = ABSENT

    def present(self):
        return _present(self)


def apply_patch(record, patch, updated_at=None):
    """Return a copy of record with every present patch field applied.

    None removes the attribute; updatedAt is stamped when given.
    """
    merged = dict(record)
    for key, value in patch.present().items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    if updated_at:
        merged["updatedAt"] = updated_at
    return merged


def now_iso(clock=None):
    """ISO-8601 UTC timestamp with millisecond precision."""
    ts = clock() if clock else time.time()
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


_ALPHABET = string.digits + string.ascii_lowercase


def _base36(n):
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _ALPHABET[r] + out
        if n == 0:
            return out


def _random_suffix(length=9):
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_club_id():
    return f"club_{_base36(int(time.time() * 1000))}_{_random_suffix()}"


def generate_membership_id():
    return f"mem_{_base36(int(time.time() * 1000))}_{_random_suffix()}"


def generate_invitation_id():
    return f"inv_{_base36(int(time.time() * 1000))}_{_random_suffix(6)}"


def normalize_club_name(name):
    return name.strip().lower()


def _optional_text(data, key, max_length, label):
    """Trimmed optional string; empty becomes None."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise validation_error(f"{label} must be a string", field=key)
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise validation_error(f"{label} is too long", field=key, maxLength=max_length)
    return value


def _check_name(name):
    if not isinstance(name, str) or not name.strip():
        raise validation_error("Club name is required", field="name")
    name = name.strip()
    if len(name) < NAME_MIN_LENGTH:
        raise validation_error("Club name is too short", field="name")
    if len(name) > NAME_MAX_LENGTH:
        raise validation_error("Club name is too long", field="name", maxLength=NAME_MAX_LENGTH)
    return name


def _check_logo_url(data):
    value = _optional_text(data, "logoUrl", 2048, "Club logo URL")
    if value is None:
        return None
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        raise validation_error("Club logo URL is not valid", field="logoUrl")
    return value


def check_club_status(status):
    if status not in CLUB_STATUSES:
        raise validation_error("Invalid club status", field="status", allowed=list(CLUB_STATUSES))
    return status


def validate_create_club_input(data):
    """Validate and clean create-club input. Returns a dict with only set fields."""
    if not isinstance(data, dict):
        raise validation_error("Invalid club data")
    cleaned = {"name": _check_name(data.get("name"))}
    optional = {
        "description": _optional_text(data, "description", DESCRIPTION_MAX_LENGTH, "Club description"),
        "city": _optional_text(data, "city", CITY_MAX_LENGTH, "Club city name"),
        "logoUrl": _check_logo_url(data),
    }
    cleaned.update({k: v for k, v in optional.items() if v is not None})
    return cleaned


def validate_club_patch(patch):
    """Validate a ClubPatch; returns a cleaned ClubPatch."""
    present = patch.present()
    if not present:
        raise validation_error("At least one field must be updated")
    cleaned = {}
    if "name" in present:
        cleaned["name"] = _check_name(present["name"])
    if "description" in present:
        cleaned["description"] = _optional_text(present, "description", DESCRIPTION_MAX_LENGTH, "Club description")
    if "city" in present:
        cleaned["city"] = _optional_text(present, "city", CITY_MAX_LENGTH, "Club city name")
    if "logoUrl" in present:
        cleaned["logoUrl"] = _check_logo_url(present)
    if "status" in present:
        cleaned["status"] = check_club_status(present["status"])
    return ClubPatch(**cleaned)


def is_valid_club_status_transition(current, target):
    return target in CLUB_STATUS_TRANSITIONS.get(current, ())


def is_valid_membership_status_transition(current, target):
    return target in MEMBERSHIP_STATUS_TRANSITIONS.get(current, ())


def check_club_status_transition(current, target):
    """Raise VALIDATION unless current -> target is allowed. Same status is a no-op."""
    if current == target:
        return
    if not is_valid_club_status_transition(current, target):
        raise validation_error(
            f"Invalid club status transition from {current} to {target}",
            currentStatus=current,
            targetStatus=target,
        )


def check_membership_status_transition(current, target):
    if current == target:
        return
    if not is_valid_membership_status_transition(current, target):
        raise validation_error(
            f"Invalid membership status transition from {current} to {target}",
            currentStatus=current,
            targetStatus=target,
        )


def check_role(role):
    if role not in MEMBERSHIP_ROLES:
        raise validation_error("Invalid membership role", field="role", allowed=list(MEMBERSHIP_ROLES))
    return role


def check_membership_status(status):
    if status not in MEMBERSHIP_STATUSES:
        raise validation_error("Invalid membership status", field="status", allowed=list(MEMBERSHIP_STATUSES))
    return status


def check_join_message(data):
    return _optional_text(data or {}, "message", JOIN_MESSAGE_MAX_LENGTH, "Join message")


def check_reason(data):
    return _optional_text(data or {}, "reason", REASON_MAX_LENGTH, "Reason")


def parse_limit(value, default=None, maximum=None):
    """Page size from a query-string value, clamped to [1, maximum]."""
    default = default or config.CLUB_LIST_DEFAULT_LIMIT
    maximum = maximum or config.CLUB_LIST_MAX_LIMIT
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise validation_error("limit must be an integer", field="limit")
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise validation_error("limit must be an integer", field="limit")
    return max(1, min(limit, maximum))


def invitation_expiry(clock=None, days=INVITATION_EXPIRY_DAYS):
    """Timestamp `days` from now, in the now_iso format."""
    ts = clock() if clock else time.time()
    return now_iso(lambda: ts + days * 86400)


def is_invitation_expired(invitation, now):
    # now_iso strings compare in time order
    return invitation.get("expiresAt", "") < now


def check_invitation_status(status):
    if status not in INVITATION_STATUSES:
        raise validation_error("Invalid invitation status", field="status", allowed=list(INVITATION_STATUSES))
    return status


def check_invitation_status_transition(current, target, invitation_id=None):
    """Only a pending invitation can change status; anything else is a CONFLICT."""
    if target not in INVITATION_STATUS_TRANSITIONS.get(current, ()):
        raise ServiceError(
            ErrorKind.CONFLICT,
            f"Invitation already processed with status: {current}",
            code="INVITATION_ALREADY_PROCESSED",
            invitationId=invitation_id,
            status=current,
        )


def validate_invitation_input(data):
    """Cleaned {userId, role, message?} for a new invitation."""
    if not isinstance(data, dict):
        raise validation_error("Invalid invitation data")
    user_id = data.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        raise validation_error("User ID is required", field="userId")
    role = data.get("role") or ROLE_MEMBER
    if role not in INVITABLE_ROLES:
        raise validation_error("Invalid invitation role", field="role", allowed=list(INVITABLE_ROLES))
    cleaned = {"userId": user_id.strip(), "role": role}
    message = _optional_text(data, "message", INVITATION_MESSAGE_MAX_LENGTH, "Invitation message")
    if message:
        cleaned["message"] = message
    return cleaned
