"""Unit tests for clubs.invitation_repository on the in-memory store."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.errors import ErrorKind, ServiceError
from common.store import MemoryStore, Put
from clubs.invitation_repository import InvitationRepository, club_invitations_pk


class FakeClock:
    def __init__(self, now=1700000000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(store, clock):
    return InvitationRepository(store, clock=clock)


def test_create_writes_three_records(repo, store):
    inv = repo.create("c1", "u1", invited_by="owner", role="admin", message="join us")
    assert inv["status"] == "pending"
    assert inv["invitationId"].startswith("inv_")
    assert inv["invitedAt"] == "2023-11-14T22:13:20.000Z"
    assert inv["expiresAt"] == "2023-11-21T22:13:20.000Z"
    key = f"INVITATION#{inv['invitationId']}"
    assert store.get(key, "METADATA")["entityType"] == "CLUB_INVITATION"
    assert store.get("USER#u1", key)["entityType"] == "USER_INVITATION"
    assert store.get("CLUB#c1#INVITATIONS", key)["role"] == "admin"
    assert repo.get_by_id(inv["invitationId"]) == inv


def test_update_status_rewrites_every_record(repo, store):
    inv = repo.create("c1", "u1", invited_by="owner")
    updated = repo.update_status(inv["invitationId"], "declined", processed_by="u1")
    assert updated["status"] == "declined"
    assert updated["processedBy"] == "u1"
    key = f"INVITATION#{inv['invitationId']}"
    assert store.get("USER#u1", key)["status"] == "declined"
    assert store.get(club_invitations_pk("c1"), key)["status"] == "declined"


@pytest.mark.parametrize("final", ["accepted", "declined", "expired", "cancelled"])
def test_final_statuses_cannot_change(repo, final):
    inv = repo.create("c1", "u1", invited_by="owner")
    repo.update_status(inv["invitationId"], final)
    with pytest.raises(ServiceError) as exc:
        repo.update_status(inv["invitationId"], "cancelled")
    assert exc.value.kind == ErrorKind.CONFLICT
    assert exc.value.code == "INVITATION_ALREADY_PROCESSED"
    assert repo.get_by_id(inv["invitationId"])["status"] == final


def test_update_missing_or_bad_status(repo):
    with pytest.raises(ServiceError) as exc:
        repo.update_status("inv_missing", "accepted")
    assert exc.value.kind == ErrorKind.NOT_FOUND
    inv = repo.create("c1", "u1", invited_by="owner")
    with pytest.raises(ServiceError) as exc:
        repo.update_status(inv["invitationId"], "maybe")
    assert exc.value.kind == ErrorKind.VALIDATION


def test_user_listing_skips_other_records_and_paginates(repo, store, clock):
    store.atomic_write([Put({"PK": "USER#u1", "SK": "PROFILE", "displayName": "Ann"})])
    ids = []
    for i in range(5):
        clock.now += 1
        ids.append(repo.create(f"c{i}", "u1", invited_by="owner")["invitationId"])
    repo.create("c9", "u2", invited_by="owner")
    seen, cursor = [], None
    while True:
        page = repo.list_user_invitations("u1", cursor=cursor, limit=2)
        seen.extend(page["invitations"])
        cursor = page.get("nextCursor")
        if not cursor:
            break
    assert len(seen) == 5
    assert {i["invitationId"] for i in seen} == set(ids)
    assert [i["invitationId"] for i in seen] == sorted(ids)


def test_club_listing_with_status_filter(repo):
    a = repo.create("c1", "u1", invited_by="owner")
    repo.create("c1", "u2", invited_by="owner")
    repo.create("c2", "u3", invited_by="owner")
    repo.update_status(a["invitationId"], "cancelled")
    pending = repo.list_club_invitations("c1", status="pending")["invitations"]
    assert [i["userId"] for i in pending] == ["u2"]
    assert len(repo.list_club_invitations("c1")["invitations"]) == 2


def test_cursor_from_another_listing_is_invalid(repo):
    for user in ("u1", "u2"):
        repo.create("c1", user, invited_by="owner")
    page = repo.list_club_invitations("c1", limit=1)
    with pytest.raises(ServiceError) as exc:
        repo.list_club_invitations("c2", cursor=page["nextCursor"])
    assert exc.value.code == "INVALID_CURSOR"


def test_has_pending_invitation(repo, clock):
    inv = repo.create("c1", "u1", invited_by="owner")
    assert repo.has_pending_invitation("c1", "u1") is True
    assert repo.has_pending_invitation("c2", "u1") is False
    clock.now += 8 * 86400
    assert repo.has_pending_invitation("c1", "u1") is False
    clock.now -= 8 * 86400
    repo.update_status(inv["invitationId"], "declined")
    assert repo.has_pending_invitation("c1", "u1") is False
