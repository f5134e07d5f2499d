"""Unit tests for api.handler."""
import json
import sys
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

# Allow importing api and common when running tests from repo root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.store import MemoryStore, Put


def _event(path, method="GET", sub=None, groups=None, body=None, qs=None):
    """API Gateway HTTP API 2.0 payload, with a Cognito authorizer when sub is set."""
    event = {
        "version": "2.0",
        "routeKey": f"{method} {path}",
        "rawPath": path,
        "requestContext": {"http": {"method": method, "path": path}},
    }
    if sub:
        claims = {"sub": sub, "email": f"{sub}@example.com"}
        if groups is not None:
            claims["cognito:groups"] = groups
        event["requestContext"]["authorizer"] = {"jwt": {"claims": claims}}
    if body is not None:
        event["body"] = json.dumps(body)
    if qs is not None:
        event["queryStringParameters"] = qs
    return event


@pytest.fixture
def store():
    """Route every request to one in-memory table."""
    from api import handler as api_handler
    mem = MemoryStore()
    api_handler.CAPABILITY_CACHE.clear()
    with patch("api.handler.TABLE_NAME", "club-main"), patch("api.handler._getStore", return_value=mem):
        yield mem


def _call(event):
    from api.handler import handler
    result = handler(event, None)
    return result["statusCode"], json.loads(result["body"])


def test_health_returns_ok():
    status, body = _call(_event("/health"))
    assert status == 200
    assert body == {"ok": True}


def test_missing_table_name_is_500():
    with patch("api.handler.TABLE_NAME", ""):
        status, body = _call(_event("/clubs"))
    assert status == 500
    assert body["error"] == "TABLE_NAME not set"


def test_unknown_route_returns_404(store):
    status, _ = _call(_event("/unknown"))
    assert status == 404


def test_create_club_requires_auth(store):
    status, body = _call(_event("/clubs", "POST", body={"name": "Velo Club"}))
    assert status == 401
    assert body["error"] == "Unauthorized"


def test_create_and_fetch_club(store):
    status, club = _call(_event("/clubs", "POST", sub="u1", body={"name": "Velo Club", "city": "Sydney"}))
    assert status == 201
    assert club["status"] == "active"
    status, fetched = _call(_event(f"/clubs/{club['id']}"))
    assert status == 200
    assert fetched == club
    status, body = _call(_event("/clubs", "POST", sub="u2", body={"name": " velo club "}))
    assert status == 409
    assert body["error"] == "CONFLICT"


def test_create_ignores_client_supplied_id(store):
    _, club = _call(_event("/clubs", "POST", sub="alice", body={"name": "Velo Club"}))
    status, body = _call(_event("/clubs", "POST", sub="mallory", body={"name": "Velo Club", "id": club["id"]}))
    assert status == 409
    assert body["error"] == "CONFLICT"
    assert store.get(f"CLUB#{club['id']}", "MEMBER#mallory") is None
    status, _ = _call(_event(f"/clubs/{club['id']}", "PUT", sub="mallory", body={"status": "archived"}))
    assert status == 403
    status, fresh = _call(_event("/clubs", "POST", sub="mallory", body={"name": "Other Club", "id": club["id"]}))
    assert status == 201
    assert fresh["id"] != club["id"]
    assert fresh["createdBy"] == "mallory"


def test_validation_error_is_400(store):
    status, body = _call(_event("/clubs", "POST", sub="u1", body={"name": ""}))
    assert status == 400
    assert body["error"] == "VALIDATION"


def test_invalid_cursor_is_400(store):
    status, body = _call(_event("/clubs", qs={"cursor": "%%%"}))
    assert status == 400
    assert body["error"] == "INVALID_CURSOR"


def test_get_missing_club_is_404(store):
    status, _ = _call(_event("/clubs/club_missing"))
    assert status == 404


def test_list_clubs_paginates(store):
    for name in ("Alpha", "Beta", "Gamma"):
        _call(_event("/clubs", "POST", sub="u1", body={"name": name}))
    status, page = _call(_event("/clubs", qs={"limit": "2"}))
    assert status == 200
    assert [c["name"] for c in page["clubs"]] == ["Alpha", "Beta"]
    status, rest = _call(_event("/clubs", qs={"limit": "2", "cursor": page["nextCursor"]}))
    assert [c["name"] for c in rest["clubs"]] == ["Gamma"]
    assert "nextCursor" not in rest


def test_update_club_needs_owner(store):
    _, club = _call(_event("/clubs", "POST", sub="owner", body={"name": "Velo Club"}))
    path = f"/clubs/{club['id']}"
    status, body = _call(_event(path, "PUT", sub="stranger", body={"city": "Perth"}))
    assert status == 403
    assert body["details"]["capability"] == "manage_club_settings"
    status, updated = _call(_event(path, "PUT", sub="owner", body={"city": "Perth"}))
    assert status == 200
    assert updated["city"] == "Perth"


def test_platform_admin_can_update_any_club(store):
    _, club = _call(_event("/clubs", "POST", sub="owner", body={"name": "Velo Club"}))
    status, updated = _call(_event(f"/clubs/{club['id']}", "PUT", sub="root", groups="[admin]", body={"status": "suspended"}))
    assert status == 200
    assert updated["status"] == "suspended"


def test_membership_flow(store):
    _, club = _call(_event("/clubs", "POST", sub="owner", body={"name": "Velo Club"}))
    cid = club["id"]

    status, pending = _call(_event(f"/clubs/{cid}/members", "POST", sub="u1", body={"message": "hi"}))
    assert status == 201
    assert pending["status"] == "pending"

    status, _ = _call(_event(f"/clubs/{cid}/members", sub="u1"))
    assert status == 403

    status, approved = _call(_event(f"/clubs/{cid}/requests/u1", "POST", sub="owner", body={"action": "approve"}))
    assert status == 200
    assert approved["status"] == "active"

    status, promoted = _call(_event(f"/clubs/{cid}/members/u1", "PUT", sub="owner", body={"role": "admin"}))
    assert status == 200
    assert promoted["role"] == "admin"

    status, listing = _call(_event(f"/clubs/{cid}/members", sub="u1", qs={"role": "admin"}))
    assert status == 200
    assert [m["userId"] for m in listing["members"]] == ["u1"]
    assert listing["members"][0]["displayName"] == "Unknown User"

    status, mine = _call(_event("/users/me/memberships", sub="u1"))
    assert status == 200
    assert mine["memberships"][0]["clubName"] == "Velo Club"

    status, left = _call(_event(f"/clubs/{cid}/members/me", "DELETE", sub="u1"))
    assert status == 200
    assert left["status"] == "removed"


def test_remove_member(store):
    _, club = _call(_event("/clubs", "POST", sub="owner", body={"name": "Velo Club"}))
    cid = club["id"]
    _call(_event(f"/clubs/{cid}/members", "POST", sub="u1"))
    _call(_event(f"/clubs/{cid}/requests/u1", "POST", sub="owner", body={"action": "approve"}))
    status, _ = _call(_event(f"/clubs/{cid}/members/owner", "DELETE", sub="u1"))
    assert status == 403
    status, removed = _call(_event(f"/clubs/{cid}/members/u1", "DELETE", sub="owner", qs={"reason": "spam"}))
    assert status == 200
    assert removed["reason"] == "spam"


def test_invitation_flow(store):
    store.atomic_write([Put({"PK": "USER#u1", "SK": "PROFILE", "displayName": "Ann", "email": "ann@example.com"})])
    _, club = _call(_event("/clubs", "POST", sub="owner", body={"name": "Velo Club"}))
    cid = club["id"]

    status, body = _call(_event(f"/clubs/{cid}/invitations", "POST", sub="u1", body={"userId": "u1"}))
    assert status == 403
    assert body["details"]["capability"] == "invite_members"
    status, _ = _call(_event(f"/clubs/{cid}/invitations", "POST", sub="owner", body={"userId": "nobody"}))
    assert status == 404

    status, inv = _call(_event(f"/clubs/{cid}/invitations", "POST", sub="owner", body={"userId": "u1"}))
    assert status == 201
    assert inv["status"] == "pending"

    status, listed = _call(_event(f"/clubs/{cid}/invitations", sub="owner", qs={"status": "pending"}))
    assert status == 200
    assert [i["userId"] for i in listed["invitations"]] == ["u1"]

    status, mine = _call(_event("/users/me/invitations", sub="u1"))
    assert status == 200
    assert mine["invitations"][0]["clubName"] == "Velo Club"

    status, _ = _call(_event(f"/invitations/{inv['invitationId']}", "POST", sub="owner", body={"action": "accept"}))
    assert status == 403
    status, result = _call(_event(f"/invitations/{inv['invitationId']}", "POST", sub="u1", body={"action": "accept"}))
    assert status == 200
    assert result["invitation"]["status"] == "accepted"
    assert result["membership"]["status"] == "active"

    status, _ = _call(_event(f"/clubs/{cid}/members/me", "DELETE", sub="u1"))
    assert status == 200
    status, body = _call(_event(f"/invitations/{inv['invitationId']}", "DELETE", sub="owner"))
    assert status == 409
    assert body["error"] == "INVITATION_ALREADY_PROCESSED"


def test_store_failure_is_generic_500(store):
    broken = MagicMock()
    broken.query.side_effect = RuntimeError("secret table detail")
    with patch("api.handler._getStore", return_value=broken):
        status, body = _call(_event("/clubs"))
    assert status == 500
    assert body == {"error": "INTERNAL_ERROR", "message": "Internal server error"}


def test_groups_parsing():
    from api.handler import getPrincipal
    assert getPrincipal(_event("/", sub="a", groups=["admin"])).role == "admin"
    assert getPrincipal(_event("/", sub="a", groups="[admin, user]")).role == "admin"
    assert getPrincipal(_event("/", sub="a", groups="user")).role == "user"
    assert getPrincipal(_event("/")).is_authenticated is False
