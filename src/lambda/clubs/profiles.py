"""
User profile lookups used to decorate member listings.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from common import config

logger = config.get_logger(__name__)

UNKNOWN_DISPLAY_NAME = "Unknown User"


@dataclass
class ProfileResult:
    """Outcome of one lookup: profile (None when absent) or the error raised."""
    profile: dict = None
    error: Exception = None

    @property
    def ok(self):
        return self.error is None


class ProfileLookup:
    """Reads USER#<id> / PROFILE records from the club table."""

    def __init__(self, store):
        self.store = store

    def get_user_by_id(self, user_id):
        item = self.store.get(f"USER#{user_id}", "PROFILE")
        if item is None:
            return None
        return {
            "displayName": item.get("displayName") or item.get("email", ""),
            "email": item.get("email", ""),
            "avatarUrl": item.get("avatarUrl"),
        }


def _lookup(profiles, user_id):
    try:
        return ProfileResult(profile=profiles.get_user_by_id(user_id))
    except Exception as e:
        logger.warning("profile lookup failed userId=%s: %s", user_id, e)
        return ProfileResult(error=e)


def fetch_profiles(profiles, user_ids, max_workers=None):
    """Look up every user concurrently. Returns {userId: ProfileResult}."""
    unique_ids = list(dict.fromkeys(user_ids))
    if not unique_ids:
        return {}
    workers = min(max_workers or config.PROFILE_LOOKUP_WORKERS, len(unique_ids))
    with ThreadPoolExecutor(max_workers=workers) as ex:
        results = list(ex.map(lambda uid: _lookup(profiles, uid), unique_ids))
    return dict(zip(unique_ids, results))


def decorate_member(member, result):
    """Copy of member with displayName/email/avatarUrl from the lookup, or placeholders."""
    out = dict(member)
    if result is not None and result.ok and result.profile:
        out["displayName"] = result.profile.get("displayName") or UNKNOWN_DISPLAY_NAME
        out["email"] = result.profile.get("email", "")
        if result.profile.get("avatarUrl"):
            out["avatarUrl"] = result.profile["avatarUrl"]
        return out
    out["displayName"] = UNKNOWN_DISPLAY_NAME
    out["email"] = ""
    if result is not None and not result.ok:
        out["profileError"] = str(result.error) or type(result.error).__name__
    return out
