"""
Invitation persistence on the single table.

One invitation is three records written together:
- canonical    PK=INVITATION#<id>            SK=METADATA
- user index   PK=USER#<userId>              SK=INVITATION#<id>
- club index   PK=CLUB#<clubId>#INVITATIONS  SK=INVITATION#<id>

Invitation ids lead with a base36 millisecond timestamp, so both index
partitions list invitations oldest first.
"""
from common import config
from common.cursor import decode_cursor, encode_cursor
from common.errors import conflict, internal_error, invalid_cursor, not_found
from common.store import MUST_EXIST, MUST_NOT_EXIST, Put, StoreConflict, StoreUnavailable, timed
from clubs import rules

logger = config.get_logger(__name__)

SK_PREFIX = "INVITATION#"


def invitation_pk(invitation_id):
    return f"INVITATION#{invitation_id}"


def club_invitations_pk(club_id):
    return f"CLUB#{club_id}#INVITATIONS"


def user_invitations_pk(user_id):
    return f"USER#{user_id}"


def _invitation_from_item(item):
    return {k: v for k, v in item.items() if k not in ("PK", "SK", "entityType")}


def _records(invitation):
    sk = f"{SK_PREFIX}{invitation['invitationId']}"
    canonical = {"PK": invitation_pk(invitation["invitationId"]), "SK": "METADATA", "entityType": "CLUB_INVITATION"}
    canonical.update(invitation)
    user_index = {"PK": user_invitations_pk(invitation["userId"]), "SK": sk, "entityType": "USER_INVITATION"}
    user_index.update(invitation)
    club_index = {"PK": club_invitations_pk(invitation["clubId"]), "SK": sk, "entityType": "CLUB_INVITATION_INDEX"}
    club_index.update(invitation)
    return canonical, user_index, club_index


class InvitationRepository:
    def __init__(self, store, clock=None):
        self.store = store
        self.clock = clock

    def get_by_id(self, invitation_id):
        try:
            item = self.store.get(invitation_pk(invitation_id), "METADATA")
        except StoreUnavailable as e:
            logger.exception("invitation read failed invitationId=%s", invitation_id)
            raise internal_error() from e
        return _invitation_from_item(item) if item else None

    def create(self, club_id, user_id, invited_by, role=rules.ROLE_MEMBER, message=None):
        """Create a pending invitation that expires after INVITATION_EXPIRY_DAYS."""
        elapsed = timed()
        invitation = {
            "invitationId": rules.generate_invitation_id(),
            "clubId": club_id,
            "userId": user_id,
            "role": role,
            "status": rules.INVITATION_PENDING,
            "invitedBy": invited_by,
            "invitedAt": rules.now_iso(self.clock),
            "expiresAt": rules.invitation_expiry(self.clock),
        }
        if message:
            invitation["message"] = message
        canonical, user_index, club_index = _records(invitation)
        try:
            self.store.atomic_write([Put(canonical, condition=MUST_NOT_EXIST), Put(user_index), Put(club_index)])
        except StoreConflict as e:
            logger.warning("invitation id collision invitationId=%s", invitation["invitationId"])
            raise conflict("Invitation already exists", invitationId=invitation["invitationId"]) from e
        except StoreUnavailable as e:
            logger.exception("invitation create failed clubId=%s userId=%s", club_id, user_id)
            raise internal_error() from e
        logger.info(
            "invitation created invitationId=%s clubId=%s userId=%s role=%s durationMs=%s",
            invitation["invitationId"], club_id, user_id, role, elapsed(),
        )
        return invitation

    def update_status(self, invitation_id, status, processed_by=None):
        """Move a pending invitation to a final status, rewriting all three records."""
        rules.check_invitation_status(status)
        current = self.get_by_id(invitation_id)
        if current is None:
            raise not_found("Invitation not found", invitationId=invitation_id)
        rules.check_invitation_status_transition(current["status"], status, invitation_id)
        updated = dict(current)
        updated["status"] = status
        updated["processedAt"] = rules.now_iso(self.clock)
        if processed_by:
            updated["processedBy"] = processed_by
        canonical, user_index, club_index = _records(updated)
        try:
            self.store.atomic_write([Put(canonical, condition=MUST_EXIST), Put(user_index), Put(club_index)])
        except StoreConflict as e:
            raise not_found("Invitation not found", invitationId=invitation_id) from e
        except StoreUnavailable as e:
            logger.exception("invitation update failed invitationId=%s", invitation_id)
            raise internal_error() from e
        logger.info("invitation %s invitationId=%s by=%s", status, invitation_id, processed_by)
        return updated

    def _list(self, pk, owner_field, owner_id, status, cursor, limit):
        limit = limit or config.CLUB_LIST_DEFAULT_LIMIT
        start = None
        if cursor:
            cursor_owner, cursor_id = decode_cursor(cursor, owner_field)
            if cursor_owner != owner_id:
                raise invalid_cursor("Cursor belongs to another listing")
            start = f"{SK_PREFIX}{cursor_id}"
        rows = []
        try:
            while True:
                page = self.store.query(pk, begins_with=SK_PREFIX, start_after=start, limit=limit + 1)
                rows.extend(i for i in page.items if not status or i.get("status") == status)
                if len(rows) > limit or not page.has_more:
                    break
                start = page.last_key
        except StoreUnavailable as e:
            logger.exception("invitation list failed pk=%s", pk)
            raise internal_error() from e
        out = {"invitations": [_invitation_from_item(r) for r in rows[:limit]]}
        if len(rows) > limit:
            out["nextCursor"] = encode_cursor(owner_field, owner_id, rows[limit - 1]["invitationId"])
        return out

    def list_user_invitations(self, user_id, status=None, cursor=None, limit=None):
        """One page of a user's invitations: {"invitations": [...], "nextCursor": token?}."""
        return self._list(user_invitations_pk(user_id), "userId", user_id, status, cursor, limit)

    def list_club_invitations(self, club_id, status=None, cursor=None, limit=None):
        return self._list(club_invitations_pk(club_id), "clubId", club_id, status, cursor, limit)

    def has_pending_invitation(self, club_id, user_id):
        """True when the user holds an unexpired pending invitation to the club."""
        now = rules.now_iso(self.clock)
        cursor = None
        while True:
            page = self.list_user_invitations(user_id, status=rules.INVITATION_PENDING, cursor=cursor, limit=100)
            for inv in page["invitations"]:
                if inv["clubId"] == club_id and not rules.is_invitation_expired(inv, now):
                    return True
            cursor = page.get("nextCursor")
            if not cursor:
                return False
