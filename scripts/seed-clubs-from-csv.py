#!/usr/bin/env python3
"""Create clubs from a CSV file directly in DynamoDB."""
import csv
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src", "lambda"))

os.environ.setdefault("TABLE_NAME", "club-main")
os.environ.setdefault("AWS_REGION", "us-east-1")

FIELDS = {
    "name": ["name", "club"],
    "city": ["city", "location", "town"],
    "description": ["description", "about"],
    "logoUrl": ["logo", "image"],
}


def _match_column(header: str, patterns: list) -> bool:
    """Return True if header (lowercased) matches any pattern (substring or exact)."""
    h = (header or "").lower().strip()
    if not h:
        return False
    return any(p in h or h == p for p in patterns)


def _build_col_map(headers: list) -> dict:
    """Build map of field -> header key. Columns can be in any order."""
    col_map = {}
    for h in headers:
        key = (h or "").strip()
        if not key:
            continue
        for field, patterns in FIELDS.items():
            if field not in col_map and _match_column(key, patterns):
                col_map[field] = h
                break
    return col_map


def parse_csv(path: str) -> list:
    """Parse CSV rows into create-club inputs. Rows without a name are skipped."""
    rows = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        col_map = _build_col_map(reader.fieldnames or [])
        for row in reader:
            data = {field: (row.get(key) or "").strip() for field, key in col_map.items()}
            if not data.get("name"):
                continue
            rows.append({k: v for k, v in data.items() if v})
    return rows


def seed(service, rows, owner_id=None) -> dict:
    """Create each club; duplicates and invalid rows are reported, not fatal."""
    from common.errors import ErrorKind, ServiceError

    created, skipped = [], []
    for data in rows:
        try:
            club = service.create_club(data, creator_id=owner_id)
            created.append(club["id"])
        except ServiceError as e:
            if e.kind not in (ErrorKind.CONFLICT, ErrorKind.VALIDATION):
                raise
            skipped.append({"name": data.get("name"), "reason": e.message})
    return {"created": created, "skipped": skipped}


def main():
    if len(sys.argv) < 2:
        print("Usage: seed-clubs-from-csv.py <file.csv> [ownerUserId]")
        sys.exit(1)
    csv_path = sys.argv[1]
    owner_id = sys.argv[2] if len(sys.argv) > 2 else None
    if not os.path.exists(csv_path):
        print(f"File not found: {csv_path}")
        sys.exit(1)
    rows = parse_csv(csv_path)
    if not rows:
        print("No valid rows found")
        sys.exit(1)
    print(f"Parsed {len(rows)} clubs")

    from api.handler import _buildServices
    result = seed(_buildServices()["clubs"], rows, owner_id=owner_id)
    print(f"Created: {len(result['created'])}")
    for s in result["skipped"]:
        print(f"Skipped {s['name']!r}: {s['reason']}")
    print("Done.")


if __name__ == "__main__":
    main()
