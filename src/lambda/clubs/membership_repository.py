"""
Membership persistence on the single table.

One membership is three records written together:
- canonical          PK=CLUB#<clubId>           SK=MEMBER#<userId>
- user index         PK=USER#<userId>           SK=MEMBERSHIP#<clubId>
- club member index  PK=CLUB#<clubId>#MEMBERS   SK=ROLE#<role>#USER#<userId>

The member index sort key leads with the role, so a role filter is a key
prefix and listing all members returns them grouped by role.
"""
from common import config
from common.cursor import decode_cursor, encode_cursor
from common.errors import conflict, internal_error, invalid_cursor, not_found
from common.store import MUST_EXIST, Condition, Delete, Put, StoreConflict, StoreUnavailable, timed
from clubs import rules
from clubs.profiles import decorate_member, fetch_profiles

logger = config.get_logger(__name__)

CURSOR_FIELD = "role"
PAGE_SIZE = 100

# A removed membership may be replaced by a new one.
REJOINABLE = Condition(exists=False, or_equals=("status", rules.STATUS_REMOVED))

_INDEX_FIELDS = ("membershipId", "clubId", "userId", "role", "status", "joinedAt", "updatedAt")


def member_pk(club_id):
    return f"CLUB#{club_id}"


def member_sk(user_id):
    return f"MEMBER#{user_id}"


def members_index_pk(club_id):
    return f"CLUB#{club_id}#MEMBERS"


def members_index_sk(role, user_id):
    return f"ROLE#{role}#USER#{user_id}"


def _membership_from_item(item):
    return {k: v for k, v in item.items() if k not in ("PK", "SK", "entityType")}


def _records(membership):
    """Canonical, user index and member index items for one membership."""
    summary = {k: membership[k] for k in _INDEX_FIELDS if k in membership}
    canonical = {"PK": member_pk(membership["clubId"]), "SK": member_sk(membership["userId"]), "entityType": "CLUB_MEMBERSHIP"}
    canonical.update(membership)
    user_index = {"PK": f"USER#{membership['userId']}", "SK": f"MEMBERSHIP#{membership['clubId']}", "entityType": "USER_MEMBERSHIP"}
    user_index.update(summary)
    member_index = {
        "PK": members_index_pk(membership["clubId"]),
        "SK": members_index_sk(membership["role"], membership["userId"]),
        "entityType": "CLUB_MEMBER_INDEX",
    }
    member_index.update(summary)
    return canonical, user_index, member_index


class MembershipRepository:
    def __init__(self, store, profiles=None, clock=None):
        self.store = store
        self.profiles = profiles
        self.clock = clock

    def _read(self, club_id, user_id):
        try:
            return self.store.get(member_pk(club_id), member_sk(user_id))
        except StoreUnavailable as e:
            logger.exception("membership read failed clubId=%s userId=%s", club_id, user_id)
            raise internal_error() from e

    def get_by_club_and_user(self, club_id, user_id):
        item = self._read(club_id, user_id)
        return _membership_from_item(item) if item else None

    def create(self, club_id, user_id, data=None, role=rules.ROLE_MEMBER, status=rules.STATUS_PENDING, invited_by=None):
        """Create a membership. Fails with CONFLICT while a non-removed one exists."""
        elapsed = timed()
        rules.check_role(role)
        rules.check_membership_status(status)
        join_message = rules.check_join_message(data)
        previous = self._read(club_id, user_id)
        if previous is not None and previous.get("status") != rules.STATUS_REMOVED:
            raise conflict("User is already a member of this club", clubId=club_id, userId=user_id)

        now = rules.now_iso(self.clock)
        membership = {
            "membershipId": rules.generate_membership_id(),
            "clubId": club_id,
            "userId": user_id,
            "role": role,
            "status": status,
            "joinedAt": now,
            "updatedAt": now,
        }
        if join_message:
            membership["joinMessage"] = join_message
        if invited_by:
            membership["invitedBy"] = invited_by

        canonical, user_index, member_index = _records(membership)
        ops = [Put(canonical, condition=REJOINABLE), Put(user_index), Put(member_index)]
        if previous is not None and previous.get("role") != role:
            ops.append(Delete(members_index_pk(club_id), members_index_sk(previous["role"], user_id)))
        try:
            self.store.atomic_write(ops)
        except StoreConflict as e:
            logger.warning("membership create conflict clubId=%s userId=%s", club_id, user_id)
            raise conflict("User is already a member of this club", clubId=club_id, userId=user_id) from e
        except StoreUnavailable as e:
            logger.exception("membership create failed clubId=%s userId=%s", club_id, user_id)
            raise internal_error() from e
        logger.info(
            "membership created clubId=%s userId=%s role=%s status=%s durationMs=%s",
            club_id, user_id, role, status, elapsed(),
        )
        return membership

    def _rewrite(self, current, patch):
        """Apply a MembershipPatch and rewrite all three records in one transaction."""
        merged = rules.apply_patch(_membership_from_item(current), patch, updated_at=rules.now_iso(self.clock))
        canonical, user_index, member_index = _records(merged)
        ops = [Put(canonical, condition=MUST_EXIST), Put(user_index)]
        if merged["role"] != current["role"]:
            ops.append(Delete(members_index_pk(merged["clubId"]), members_index_sk(current["role"], merged["userId"])))
        ops.append(Put(member_index))
        try:
            self.store.atomic_write(ops)
        except StoreConflict as e:
            logger.warning("membership vanished during update clubId=%s userId=%s", merged["clubId"], merged["userId"])
            raise not_found("Membership not found", clubId=merged["clubId"], userId=merged["userId"]) from e
        except StoreUnavailable as e:
            logger.exception("membership update failed clubId=%s userId=%s", merged["clubId"], merged["userId"])
            raise internal_error() from e
        return merged

    def update_status(self, club_id, user_id, status, processed_by=None, reason=None):
        elapsed = timed()
        rules.check_membership_status(status)
        current = self._read(club_id, user_id)
        if current is None:
            raise not_found("Membership not found", clubId=club_id, userId=user_id)
        rules.check_membership_status_transition(current["status"], status)
        patch = rules.MembershipPatch(
            status=status,
            processedBy=processed_by if processed_by else rules.ABSENT,
            processedAt=rules.now_iso(self.clock) if processed_by else rules.ABSENT,
            reason=rules.check_reason({"reason": reason}) if reason else rules.ABSENT,
        )
        updated = self._rewrite(current, patch)
        logger.info(
            "membership status updated clubId=%s userId=%s %s->%s durationMs=%s",
            club_id, user_id, current["status"], status, elapsed(),
        )
        return updated

    def update_role(self, club_id, user_id, role, updated_by=None):
        elapsed = timed()
        rules.check_role(role)
        current = self._read(club_id, user_id)
        if current is None:
            raise not_found("Membership not found", clubId=club_id, userId=user_id)
        patch = rules.MembershipPatch(
            role=role,
            processedBy=updated_by if updated_by else rules.ABSENT,
            processedAt=rules.now_iso(self.clock) if updated_by else rules.ABSENT,
        )
        updated = self._rewrite(current, patch)
        logger.info(
            "membership role updated clubId=%s userId=%s %s->%s durationMs=%s",
            club_id, user_id, current["role"], role, elapsed(),
        )
        return updated

    def remove(self, club_id, user_id, removed_by=None, reason=None):
        return self.update_status(club_id, user_id, rules.STATUS_REMOVED, processed_by=removed_by, reason=reason)

    def list_club_members(self, club_id, role=None, status=None, cursor=None, limit=None, enrich=True):
        """One page of members ordered by (role, userId): {"members": [...], "nextCursor": token?}."""
        elapsed = timed()
        limit = limit or config.CLUB_LIST_DEFAULT_LIMIT
        prefix = f"ROLE#{role}#USER#" if role else "ROLE#"
        start = None
        if cursor:
            cursor_role, cursor_user = decode_cursor(cursor, CURSOR_FIELD)
            if role and cursor_role != role:
                raise invalid_cursor("Cursor does not match the role filter")
            start = members_index_sk(cursor_role, cursor_user)

        pk = members_index_pk(club_id)
        rows = []
        try:
            while True:
                page = self.store.query(pk, begins_with=prefix, start_after=start, limit=limit + 1)
                rows.extend(i for i in page.items if not status or i.get("status") == status)
                if len(rows) > limit or not page.has_more:
                    break
                start = page.last_key
        except StoreUnavailable as e:
            logger.exception("member list failed clubId=%s", club_id)
            raise internal_error() from e

        members = [{k: r[k] for k in _INDEX_FIELDS if k in r} for r in rows[:limit]]
        if enrich and self.profiles is not None:
            results = fetch_profiles(self.profiles, [m["userId"] for m in members])
            members = [decorate_member(m, results.get(m["userId"])) for m in members]
        out = {"members": members}
        if len(rows) > limit:
            last = rows[limit - 1]
            out["nextCursor"] = encode_cursor(CURSOR_FIELD, last["role"], last["userId"])
        logger.info(
            "members listed clubId=%s role=%s status=%s count=%s durationMs=%s",
            club_id, role, status, len(members), elapsed(),
        )
        return out

    def list_user_memberships(self, user_id, status=None):
        """Every membership of a user, ordered by club id."""
        pk = f"USER#{user_id}"
        out = []
        start = None
        try:
            while True:
                page = self.store.query(pk, begins_with="MEMBERSHIP#", start_after=start)
                out.extend(
                    {k: i[k] for k in _INDEX_FIELDS if k in i}
                    for i in page.items
                    if not status or i.get("status") == status
                )
                if not page.has_more:
                    return out
                start = page.last_key
        except StoreUnavailable as e:
            logger.exception("user memberships list failed userId=%s", user_id)
            raise internal_error() from e

    def _all_members(self, club_id, role=None, status=None):
        members, cursor = [], None
        while True:
            page = self.list_club_members(club_id, role=role, status=status, cursor=cursor, limit=PAGE_SIZE, enrich=False)
            members.extend(page["members"])
            cursor = page.get("nextCursor")
            if not cursor:
                return members

    def is_user_member(self, club_id, user_id):
        membership = self.get_by_club_and_user(club_id, user_id)
        return membership is not None and membership["status"] == rules.STATUS_ACTIVE

    def get_user_role_in_club(self, club_id, user_id):
        """Role of an active member, else None."""
        membership = self.get_by_club_and_user(club_id, user_id)
        if membership is None or membership["status"] != rules.STATUS_ACTIVE:
            return None
        return membership["role"]

    def has_pending_request(self, club_id, user_id):
        membership = self.get_by_club_and_user(club_id, user_id)
        return membership is not None and membership["status"] == rules.STATUS_PENDING

    def count_club_members(self, club_id, status=rules.STATUS_ACTIVE):
        return len(self._all_members(club_id, status=status))

    def get_club_owner(self, club_id):
        owners = self.list_club_members(club_id, role=rules.ROLE_OWNER, status=rules.STATUS_ACTIVE, limit=1, enrich=False)
        return owners["members"][0] if owners["members"] else None

    def get_club_admins(self, club_id):
        """Active admins and the owner."""
        admins = self._all_members(club_id, role=rules.ROLE_ADMIN, status=rules.STATUS_ACTIVE)
        owner = self.get_club_owner(club_id)
        return admins + ([owner] if owner else [])
