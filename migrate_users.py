"""
Copy legacy customer and admin accounts into the unified user collection.

    python migrate_users.py [--only customers|admins]

Records already present in "user" (same userId or same userName) are skipped
and never modified, so the script can be run any number of times. Passwords
are copied as they are and hashed on the way in when still plaintext. A record
that fails to copy is logged and skipped; the run carries on.
"""

import argparse
import logging
import os
import sys
from typing import Any, Callable, Dict, Optional

from pymongo.errors import PyMongoError

import database
from identity import insert_user
from schemas import LegacyAdmin, LegacyCustomer, User, strip_storage

logger = logging.getLogger("migrate_users")


def _customer_to_user(doc: Dict[str, Any]) -> User:
    legacy = LegacyCustomer(**strip_storage(doc))
    return User(
        userId=legacy.C_ID,
        firstName=legacy.firstName,
        lastName=legacy.lastName,
        userName=legacy.userName,
        password=legacy.password,
        phoneNo=legacy.phoneNo,
        role="customer",
    )


def _admin_to_user(doc: Dict[str, Any]) -> User:
    legacy = LegacyAdmin(**strip_storage(doc))
    return User(
        userId=legacy.A_ID,
        userName=legacy.userName,
        password=legacy.password,
        phoneNo=legacy.phoneNo,
        role="admin",
    )


def _migrate(db, collection: str, key: str, build: Callable[[Dict[str, Any]], User]) -> Dict[str, int]:
    counts = {"found": 0, "migrated": 0, "skipped": 0, "failed": 0}
    legacy = list(db[collection].find({}))
    counts["found"] = len(legacy)
    logger.info("Found %d %s records to migrate", len(legacy), collection)

    for doc in legacy:
        legacy_id = doc.get(key)
        try:
            existing = db["user"].find_one({"$or": [{"userId": legacy_id}, {"userName": doc.get("userName")}]})
            if existing:
                logger.info("%s %s already migrated, skipping", collection.capitalize(), legacy_id)
                counts["skipped"] += 1
                continue
            insert_user(db, build(doc))
            logger.info("Migrated %s %s", collection, legacy_id)
            counts["migrated"] += 1
        except Exception:
            logger.exception("Failed to migrate %s %s", collection, legacy_id)
            counts["failed"] += 1
    return counts


def migrate_customers(db) -> Dict[str, int]:
    return _migrate(db, "customer", "C_ID", _customer_to_user)


def migrate_admins(db) -> Dict[str, int]:
    return _migrate(db, "admin", "A_ID", _admin_to_user)


def run_migration(db, only: Optional[str] = None) -> Dict[str, Dict[str, int]]:
    report = {}
    if only in (None, "customers"):
        report["customers"] = migrate_customers(db)
    if only in (None, "admins"):
        report["admins"] = migrate_admins(db)
    return report


def main(argv=None) -> int:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="Migrate legacy customers and admins to unified users")
    parser.add_argument("--only", choices=("customers", "admins"), help="run a single pass")
    args = parser.parse_args(argv)

    if database.db is None:
        logger.error("DATABASE_URL is not set; cannot connect")
        return 1
    try:
        database.client.admin.command("ping")
    except PyMongoError:
        logger.exception("Database connection error")
        return 1
    logger.info("Connected to database %s", database.DATABASE_NAME)

    report = run_migration(database.db, args.only)
    for name, counts in report.items():
        logger.info("%s: %s", name, ", ".join(f"{k}={v}" for k, v in counts.items()))
    logger.info("Migration completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
