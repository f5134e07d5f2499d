"""
Opaque pagination cursors: base64-encoded JSON of the last row's index key,
e.g. {"nameLower": "velo club", "id": "club_..."}.
"""
import base64
import binascii
import json

from common.errors import invalid_cursor


def encode_cursor(field, value, row_id):
    """Encode {field: value, "id": row_id} as an opaque token."""
    data = json.dumps({field: value, "id": row_id}, separators=(",", ":"))
    return base64.b64encode(data.encode("utf-8")).decode("ascii")


def decode_cursor(token, field):
    """Decode a token produced by encode_cursor. Returns (value, row_id)."""
    if not token or not isinstance(token, str):
        raise invalid_cursor()
    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        raise invalid_cursor()
    if not isinstance(data, dict):
        raise invalid_cursor()
    value = data.get(field)
    row_id = data.get("id")
    if not isinstance(value, str) or not isinstance(row_id, str) or not row_id:
        raise invalid_cursor()
    return value, row_id
