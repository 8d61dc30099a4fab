"""
Human-readable sequential ids (CUS01, AD01, EVT001, PG001, PMT0001).

`next_id` is the read-max-then-increment preview the registration forms show;
it reserves nothing, so two callers can be shown the same id and the unique
index on the business key decides who wins. `allocate_id` hands out ids from
an atomic per-sequence counter in the "counters" collection, floored to the
highest id already stored so that ids written by other paths (explicit ids,
migrated records) are never reissued.
"""

import logging
import re
from typing import Any, Dict, NamedTuple, Optional

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)


class IdSequence(NamedTuple):
    collection: str
    field: str
    prefix: str
    width: int
    scope: Optional[Dict[str, Any]] = None


SEQUENCES = {
    "customer": IdSequence("user", "userId", "CUS", 2, {"role": "customer"}),
    "admin": IdSequence("user", "userId", "AD", 2, {"role": "admin"}),
    "legacy_customer": IdSequence("customer", "C_ID", "CUS", 2),
    "legacy_admin": IdSequence("admin", "A_ID", "AD", 2),
    "event": IdSequence("event", "E_ID", "EVT", 3),
    "package": IdSequence("package", "Pg_ID", "PG", 3),
    "payment": IdSequence("payment", "P_ID", "PMT", 4),
}


def format_id(seq: IdSequence, number: int) -> str:
    return f"{seq.prefix}{str(number).zfill(seq.width)}"


def parse_id(seq: IdSequence, value: str) -> Optional[int]:
    m = re.fullmatch(re.escape(seq.prefix) + r"(\d+)", value or "")
    return int(m.group(1)) if m else None


def highest_number(db, seq: IdSequence) -> int:
    # Compared numerically: "CUS100" outranks "CUS99"
    q = {seq.field: {"$regex": f"^{re.escape(seq.prefix)}\\d+$"}, **(seq.scope or {})}
    numbers = [parse_id(seq, doc.get(seq.field)) for doc in db[seq.collection].find(q, {seq.field: 1})]
    return max([n for n in numbers if n is not None], default=0)


def _counter_value(db, name: str) -> int:
    doc = db["counters"].find_one({"_id": name})
    return int(doc["seq"]) if doc else 0


def next_id(db, name: str) -> str:
    seq = SEQUENCES[name]
    return format_id(seq, max(highest_number(db, seq), _counter_value(db, name)) + 1)


def allocate_id(db, name: str) -> str:
    seq = SEQUENCES[name]
    floor = highest_number(db, seq)
    db["counters"].update_one({"_id": name}, {"$max": {"seq": floor}}, upsert=True)
    doc = db["counters"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    new_id = format_id(seq, int(doc["seq"]))
    logger.debug("Allocated %s from sequence %s", new_id, name)
    return new_id
