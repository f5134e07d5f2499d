"""
Club persistence on the single table.

Each club is stored twice:
- canonical record  PK=CLUB#<id>     SK=METADATA
- name index entry  PK=INDEX#CLUB    SK=NAME#<nameLower>#ID#<id>

Both are written in one transaction. The index partition is shared by every
club, so a prefix query on NAME#<nameLower>#ID# answers uniqueness and a
plain query answers name-ordered listing.
"""
from common import config
from common.cursor import decode_cursor, encode_cursor
from common.errors import conflict, internal_error, not_found
from common.store import MUST_EXIST, MUST_NOT_EXIST, Delete, Put, StoreConflict, StoreUnavailable, timed
from clubs import rules

logger = config.get_logger(__name__)

INDEX_PK = "INDEX#CLUB"
NAME_PREFIX = "NAME#"
CURSOR_FIELD = "nameLower"

_INTERNAL_KEYS = ("PK", "SK", "entityType", "nameLower")


def club_pk(club_id):
    return f"CLUB#{club_id}"


def index_sk(name_lower, club_id):
    return f"{NAME_PREFIX}{name_lower}#ID#{club_id}"


def _club_from_item(item):
    return {k: v for k, v in item.items() if k not in _INTERNAL_KEYS}


def _summary_from_index(item):
    out = {
        "id": item["clubId"],
        "name": item["name"],
        "status": item["status"],
        "createdAt": item["createdAt"],
        "updatedAt": item["updatedAt"],
    }
    if item.get("city"):
        out["city"] = item["city"]
    return out


def _canonical_item(club):
    item = {"PK": club_pk(club["id"]), "SK": "METADATA", "entityType": "CLUB"}
    item.update(club)
    return item


def _index_item(club):
    return {
        "PK": INDEX_PK,
        "SK": index_sk(club["nameLower"], club["id"]),
        "entityType": "CLUB_INDEX",
        "clubId": club["id"],
        "name": club["name"],
        "nameLower": club["nameLower"],
        "status": club["status"],
        "city": club.get("city"),
        "createdAt": club["createdAt"],
        "updatedAt": club["updatedAt"],
    }


class ClubRepository:
    def __init__(self, store, clock=None):
        self.store = store
        self.clock = clock

    def _read(self, club_id):
        try:
            return self.store.get(club_pk(club_id), "METADATA")
        except StoreUnavailable as e:
            logger.exception("club read failed clubId=%s", club_id)
            raise internal_error() from e

    def get_by_id(self, club_id):
        """Club by id, or None."""
        item = self._read(club_id)
        return _club_from_item(item) if item else None

    def exists(self, club_id):
        return self._read(club_id) is not None

    def create(self, data, club_id=None, created_by=None):
        """Create a club with status active.

        Passing the id from an earlier attempt makes a retry return the stored
        club instead of writing a second one. The stored club is only returned
        when it has the same creator and normalized name; any other club under
        that id is a CONFLICT.
        """
        elapsed = timed()
        cleaned = rules.validate_create_club_input(data)
        now = rules.now_iso(self.clock)
        club = dict(cleaned)
        club.update({
            "id": club_id or rules.generate_club_id(),
            "nameLower": rules.normalize_club_name(cleaned["name"]),
            "status": rules.CLUB_ACTIVE,
            "createdAt": now,
            "updatedAt": now,
        })
        if created_by:
            club["createdBy"] = created_by
        ops = [
            Put(_canonical_item(club), condition=MUST_NOT_EXIST),
            Put(_index_item(club)),
        ]
        try:
            self.store.atomic_write(ops)
        except StoreConflict as e:
            existing = self._read(club["id"])
            if existing is None:
                raise internal_error() from e
            if existing.get("createdBy") != (created_by or None) or existing.get("nameLower") != club["nameLower"]:
                logger.warning("club id taken by another create clubId=%s", club["id"])
                raise conflict("Club already exists", clubId=club["id"]) from e
            logger.info("club create retried clubId=%s, returning stored record", club["id"])
            return _club_from_item(existing)
        except StoreUnavailable as e:
            logger.exception("club create failed clubId=%s", club["id"])
            raise internal_error() from e
        logger.info("club created clubId=%s nameLower=%s durationMs=%s", club["id"], club["nameLower"], elapsed())
        return _club_from_item(club)

    def is_name_unique(self, name, exclude_id=None):
        """True when no other club has this normalized name."""
        prefix = f"{NAME_PREFIX}{rules.normalize_club_name(name)}#ID#"
        start = None
        try:
            while True:
                page = self.store.query(INDEX_PK, begins_with=prefix, start_after=start)
                for item in page.items:
                    if item.get("clubId") != exclude_id:
                        return False
                if not page.has_more:
                    return True
                start = page.last_key
        except StoreUnavailable as e:
            logger.exception("name uniqueness check failed")
            raise internal_error() from e

    def update(self, club_id, patch):
        """Apply a ClubPatch. Rewrites the name index entry in the same transaction."""
        elapsed = timed()
        patch = rules.validate_club_patch(patch)
        current = self._read(club_id)
        if current is None:
            raise not_found("Club not found", clubId=club_id)
        if patch.status is not rules.ABSENT:
            rules.check_club_status_transition(current["status"], patch.status)

        merged = rules.apply_patch(current, patch, updated_at=rules.now_iso(self.clock))
        merged["nameLower"] = rules.normalize_club_name(merged["name"])
        club = {k: v for k, v in merged.items() if k not in ("PK", "SK", "entityType")}

        ops = [Put(_canonical_item(club), condition=MUST_EXIST)]
        if merged["nameLower"] != current["nameLower"]:
            ops.append(Delete(INDEX_PK, index_sk(current["nameLower"], club_id)))
        ops.append(Put(_index_item(club)))
        try:
            self.store.atomic_write(ops)
        except StoreConflict as e:
            logger.warning("club vanished during update clubId=%s", club_id)
            raise not_found("Club not found", clubId=club_id) from e
        except StoreUnavailable as e:
            logger.exception("club update failed clubId=%s", club_id)
            raise internal_error() from e
        logger.info("club updated clubId=%s fields=%s durationMs=%s", club_id, sorted(patch.present()), elapsed())
        return _club_from_item(club)

    def list(self, status=None, cursor=None, limit=None):
        """One name-ordered page: {"clubs": [...], "nextCursor": token?}."""
        elapsed = timed()
        limit = limit or config.CLUB_LIST_DEFAULT_LIMIT
        start = None
        if cursor:
            name_lower, cursor_id = decode_cursor(cursor, CURSOR_FIELD)
            start = index_sk(name_lower, cursor_id)

        rows = []
        try:
            while True:
                page = self.store.query(INDEX_PK, begins_with=NAME_PREFIX, start_after=start, limit=limit + 1)
                rows.extend(i for i in page.items if not status or i.get("status") == status)
                if len(rows) > limit or not page.has_more:
                    break
                start = page.last_key
        except StoreUnavailable as e:
            logger.exception("club list failed")
            raise internal_error() from e

        out = {"clubs": [_summary_from_index(r) for r in rows[:limit]]}
        if len(rows) > limit:
            last = rows[limit - 1]
            out["nextCursor"] = encode_cursor(CURSOR_FIELD, last["nameLower"], last["clubId"])
        logger.info("clubs listed status=%s count=%s durationMs=%s", status, len(out["clubs"]), elapsed())
        return out

    def list_by_status(self, status, limit=None):
        return self.list(status=status, limit=limit)["clubs"]
