"""
Authorization decisions for system-scoped and club-scoped capabilities.

authorize/authorize_club never raise and never grant on error; require and
require_club turn a denial into ServiceError(AUTHORIZATION).
"""
from dataclasses import asdict, dataclass

from common import config
from common.errors import authorization_error
from authz.cache import CapabilityCache
from authz.capabilities import Capability, is_system_capability, resolve_club_capabilities, to_capability
from clubs import rules

logger = config.get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """Caller identity built by the request handler from JWT claims."""
    user_id: str
    role: str = "user"
    is_authenticated: bool = True

    @classmethod
    def anonymous(cls):
        return cls(user_id="", role="user", is_authenticated=False)


@dataclass(frozen=True)
class AuthorizationDecision:
    granted: bool
    capability: str
    reason: str = None
    resource: str = None

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}


def _name(capability):
    return capability.value if isinstance(capability, Capability) else str(capability)


class AuthorizationService:
    def __init__(self, cache=None, memberships=None):
        self.cache = cache or CapabilityCache()
        self.memberships = memberships

    def _deny(self, principal, capability, reason, resource=None):
        logger.info(
            "authorization denied userId=%s capability=%s resource=%s reason=%s",
            getattr(principal, "user_id", None), _name(capability), resource, reason,
        )
        return AuthorizationDecision(False, _name(capability), reason=reason, resource=resource)

    def _grant(self, principal, capability, reason, resource=None):
        logger.info(
            "authorization granted userId=%s capability=%s resource=%s",
            principal.user_id, _name(capability), resource,
        )
        return AuthorizationDecision(True, _name(capability), reason=reason, resource=resource)

    def authorize(self, principal, capability, resource=None):
        """Check a system-scope capability against the principal's cached capability set."""
        try:
            if principal is None or not principal.is_authenticated or not principal.user_id:
                return self._deny(principal, capability, "Authentication required", resource)
            cap = to_capability(capability)
            if cap is None:
                return self._deny(principal, capability, "Unknown capability", resource)
            if cap in self.cache.get(principal):
                return self._grant(principal, cap, "System role grants capability", resource)
            return self._deny(principal, cap, "Insufficient privileges", resource)
        except Exception:
            logger.exception("authorization error capability=%s", _name(capability))
            return AuthorizationDecision(False, _name(capability), reason="Authorization check failed", resource=resource)

    def authorize_club(self, principal, club_id, capability):
        """Check a club-scope capability.

        A system capability is decided by the system role alone. A system role
        holding manage_all_clubs passes for every club. Otherwise the caller's
        membership is read fresh and must be active.
        """
        resource = f"club:{club_id}"
        try:
            if principal is None or not principal.is_authenticated or not principal.user_id:
                return self._deny(principal, capability, "Authentication required", resource)
            cap = to_capability(capability)
            if cap is None:
                return self._deny(principal, capability, "Unknown capability", resource)
            if is_system_capability(cap):
                return self.authorize(principal, cap, resource)
            if Capability.MANAGE_ALL_CLUBS in self.cache.get(principal):
                return self._grant(principal, cap, "System role manages all clubs", resource)
            if self.memberships is None:
                return self._deny(principal, cap, "Club membership unavailable", resource)
            membership = self.memberships.get_by_club_and_user(club_id, principal.user_id)
            if membership is None:
                return self._deny(principal, cap, "Not a member of this club", resource)
            if membership.get("status") != rules.STATUS_ACTIVE:
                return self._deny(principal, cap, f"Membership is {membership.get('status')}", resource)
            if cap in resolve_club_capabilities(membership.get("role")):
                return self._grant(principal, cap, f"Club role {membership['role']} grants capability", resource)
            return self._deny(principal, cap, "Insufficient privileges", resource)
        except Exception:
            logger.exception("club authorization error clubId=%s capability=%s", club_id, _name(capability))
            return AuthorizationDecision(False, _name(capability), reason="Authorization check failed", resource=resource)

    def require(self, principal, capability, resource=None):
        decision = self.authorize(principal, capability, resource)
        if not decision.granted:
            raise authorization_error(decision.capability, resource=resource)
        return decision

    def require_club(self, principal, club_id, capability):
        decision = self.authorize_club(principal, club_id, capability)
        if not decision.granted:
            raise authorization_error(decision.capability, resource=decision.resource)
        return decision

    def invalidate(self, user_id):
        return self.cache.invalidate(user_id)
