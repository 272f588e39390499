#!/usr/bin/env python3
"""
Migration script to convert user_progress.passed_tests from a list of entries
into the mapping keyed by test id. For repeated test ids the last entry wins.
"""

import os
import sys
from pathlib import Path

from pymongo import MongoClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.models.progress import normalize_passed_tests  # noqa: E402


def migrate_passed_tests(db):
    """Convert every list-shaped aggregate. Returns migration counters."""
    legacy_docs = list(db.user_progress.find({"passed_tests": {"$type": "array"}}))
    print(f"Found {len(legacy_docs)} user_progress documents with list-shaped passed_tests")

    migrated_count = 0
    duplicates_dropped = 0

    for doc in legacy_docs:
        user_id = doc.get("user_id")
        entries = doc.get("passed_tests") or []
        mapping = normalize_passed_tests(entries)
        duplicates_dropped += max(0, len([e for e in entries if isinstance(e, dict)]) - len(mapping))

        try:
            result = db.user_progress.update_one(
                {"_id": doc["_id"], "passed_tests": {"$type": "array"}},
                {"$set": {"passed_tests": mapping}}
            )
            if result.modified_count:
                migrated_count += 1
                print(f"  {user_id}: {len(entries)} entries -> {len(mapping)} tests")
        except Exception as e:
            print(f"ERROR processing {user_id}: {e}")

    print("\n" + "=" * 60)
    print("Migration Summary:")
    print(f"  Total: {len(legacy_docs)}")
    print(f"  Migrated: {migrated_count}")
    print(f"  Duplicate entries dropped: {duplicates_dropped}")
    print("=" * 60)

    return {
        "total": len(legacy_docs),
        "migrated": migrated_count,
        "duplicates_dropped": duplicates_dropped,
    }


if __name__ == "__main__":
    mongo_url = os.environ.get('MONGO_URL')
    db_name = os.environ.get('DB_NAME')

    if not mongo_url or not db_name:
        print("ERROR: MONGO_URL and DB_NAME environment variables required")
        sys.exit(1)

    client = MongoClient(mongo_url)
    print(f"Connected to database: {db_name}")
    migrate_passed_tests(client[db_name])
    print("\n✅ Migration completed!")
