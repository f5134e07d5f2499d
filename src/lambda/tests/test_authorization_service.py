"""Unit tests for authz.service."""
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.errors import ErrorKind, ServiceError
from authz.cache import CapabilityCache
from authz.capabilities import Capability, resolve_system_capabilities
from authz.service import AuthorizationService, Principal


@pytest.fixture
def resolver():
    return MagicMock(side_effect=resolve_system_capabilities)


@pytest.fixture
def memberships():
    repo = MagicMock()
    repo.get_by_club_and_user.return_value = None
    return repo


@pytest.fixture
def service(resolver, memberships):
    cache = CapabilityCache(resolver=resolver, ttl=300, clock=lambda: 0.0)
    return AuthorizationService(cache=cache, memberships=memberships)


def test_admin_granted_system_capability(service):
    decision = service.authorize(Principal("a1", "admin"), Capability.MANAGE_PLATFORM)
    assert decision.granted
    assert decision.capability == "manage_platform"


def test_user_denied_system_capability(service):
    decision = service.authorize(Principal("u1", "user"), "manage_platform", resource="platform")
    assert not decision.granted
    assert decision.resource == "platform"


def test_unauthenticated_denied(service, resolver):
    decision = service.authorize(Principal.anonymous(), Capability.MANAGE_PLATFORM)
    assert not decision.granted
    assert decision.reason == "Authentication required"
    resolver.assert_not_called()


def test_unknown_capability_denied(service):
    assert not service.authorize(Principal("a1", "admin"), "launch_rockets").granted


def test_two_checks_within_ttl_resolve_once(service, resolver):
    p = Principal("a1", "admin")
    service.authorize(p, Capability.MANAGE_PLATFORM)
    service.authorize(p, Capability.MANAGE_ALL_CLUBS)
    assert resolver.call_count == 1


def test_resolver_error_denies(memberships):
    cache = CapabilityCache(resolver=MagicMock(side_effect=RuntimeError("boom")), clock=lambda: 0.0)
    service = AuthorizationService(cache=cache, memberships=memberships)
    decision = service.authorize(Principal("a1", "admin"), Capability.MANAGE_PLATFORM)
    assert decision.granted is False
    assert decision.reason == "Authorization check failed"


def test_platform_admin_overrides_club_checks(service, memberships):
    decision = service.authorize_club(Principal("a1", "admin"), "c1", Capability.MANAGE_CLUB_SETTINGS)
    assert decision.granted
    assert decision.resource == "club:c1"
    memberships.get_by_club_and_user.assert_not_called()


@pytest.mark.parametrize(
    "membership,capability,granted",
    [
        (None, Capability.VIEW_CLUB_MEMBERS, False),
        ({"role": "owner", "status": "pending"}, Capability.VIEW_CLUB_MEMBERS, False),
        ({"role": "owner", "status": "removed"}, Capability.VIEW_CLUB_MEMBERS, False),
        ({"role": "member", "status": "active"}, Capability.VIEW_CLUB_MEMBERS, False),
        ({"role": "admin", "status": "active"}, Capability.VIEW_CLUB_MEMBERS, True),
        ({"role": "admin", "status": "active"}, Capability.MANAGE_ADMINS, False),
        ({"role": "owner", "status": "active"}, Capability.MANAGE_ADMINS, True),
    ],
)
def test_club_role_checks(service, memberships, membership, capability, granted):
    memberships.get_by_club_and_user.return_value = membership
    assert service.authorize_club(Principal("u1", "user"), "c1", capability).granted is granted


def test_club_membership_lookup_is_not_cached(service, memberships):
    memberships.get_by_club_and_user.return_value = {"role": "admin", "status": "active"}
    p = Principal("u1", "user")
    service.authorize_club(p, "c1", Capability.VIEW_CLUB_MEMBERS)
    service.authorize_club(p, "c1", Capability.VIEW_CLUB_MEMBERS)
    assert memberships.get_by_club_and_user.call_count == 2


def test_membership_lookup_error_denies(service, memberships):
    memberships.get_by_club_and_user.side_effect = ServiceError(ErrorKind.INTERNAL, "store down")
    decision = service.authorize_club(Principal("u1", "user"), "c1", Capability.VIEW_CLUB_MEMBERS)
    assert decision.granted is False


def test_require_club_raises_authorization_error(service):
    with pytest.raises(ServiceError) as exc:
        service.require_club(Principal("u1", "user"), "c1", Capability.REMOVE_MEMBERS)
    assert exc.value.kind == ErrorKind.AUTHORIZATION
    assert exc.value.details == {"capability": "remove_members", "resource": "club:c1"}


def test_require_passes_through_grant(service):
    assert service.require(Principal("a1", "admin"), Capability.MANAGE_ALL_CLUBS).granted


def test_invalidate_forces_resolve(service, resolver):
    p = Principal("a1", "admin")
    service.authorize(p, Capability.MANAGE_PLATFORM)
    service.invalidate("a1")
    service.authorize(p, Capability.MANAGE_PLATFORM)
    assert resolver.call_count == 2


def test_system_capability_in_club_scope_ignores_club_role(service, memberships):
    memberships.get_by_club_and_user.return_value = {"role": "owner", "status": "active"}
    decision = service.authorize_club(Principal("u1", "user"), "c1", Capability.MANAGE_PLATFORM)
    assert decision.granted is False
    assert decision.resource == "club:c1"
    memberships.get_by_club_and_user.assert_not_called()
    assert service.authorize_club(Principal("a1", "admin"), "c1", Capability.MANAGE_PLATFORM).granted
