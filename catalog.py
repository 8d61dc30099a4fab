"""
Events and the packages sold for them.

Packages reference their event by E_ID. The reference is checked when a
package is written, not afterwards: deleting an event leaves its packages in
place, and readers skip whatever no longer resolves.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

import ids
from database import create_document, get_documents, sanitize, update_document
from errors import Conflict, NotFound, ValidationError, from_pydantic
from schemas import Event, Package

logger = logging.getLogger(__name__)

EVENT_FIELDS = ("E_name", "E_description", "status")


def find_event(db, event_id: str) -> Optional[Dict[str, Any]]:
    return db["event"].find_one({"E_ID": event_id})


def find_package(db, package_id: str) -> Optional[Dict[str, Any]]:
    return db["package"].find_one({"Pg_ID": package_id})


# Events

def create_event(db, fields: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in fields.items() if v is not None}
    data["E_ID"] = data.get("E_ID") or ids.allocate_id(db, "event")
    try:
        event = Event(**data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "Required fields missing")
    try:
        doc = create_document(db, "event", event.model_dump())
    except DuplicateKeyError:
        raise Conflict(f"Event {event.E_ID} already exists")
    logger.info("Created event %s", event.E_ID)
    return sanitize(doc)


def list_events(db) -> List[Dict[str, Any]]:
    return [sanitize(e) for e in get_documents(db, "event", sort=[("E_ID", 1)])]


def get_event(db, event_id: str) -> Dict[str, Any]:
    event = find_event(db, event_id)
    if not event:
        raise NotFound("Event not found")
    return sanitize(event)


def update_event(db, event_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in fields.items() if k in EVENT_FIELDS and v is not None}
    blank = [k for k in ("E_name", "E_description") if k in changes and not str(changes[k]).strip()]
    if blank:
        raise ValidationError(f"{', '.join(blank)} cannot be empty", blank)
    if not find_event(db, event_id):
        raise NotFound("Event not found")
    if not changes:
        return get_event(db, event_id)
    return sanitize(update_document(db, "event", {"E_ID": event_id}, changes))


def delete_event(db, event_id: str) -> None:
    if db["event"].delete_one({"E_ID": event_id}).deleted_count == 0:
        raise NotFound("Event not found")
    logger.info("Deleted event %s", event_id)


# Packages

def create_package(db, fields: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in fields.items() if v is not None}
    missing = [k for k in ("Pg_price", "event") if k not in data]
    if missing:
        raise ValidationError(f"Required fields missing: {', '.join(missing)}", missing)
    if not find_event(db, data["event"]):
        raise NotFound(f"Event {data['event']} not found")
    data["Pg_ID"] = data.get("Pg_ID") or ids.allocate_id(db, "package")
    try:
        package = Package(**data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "Required fields missing")
    try:
        doc = create_document(db, "package", package.model_dump())
    except DuplicateKeyError:
        raise Conflict(f"Package {package.Pg_ID} already exists")
    logger.info("Created package %s for event %s", package.Pg_ID, package.event)
    return sanitize(doc)


def list_packages(db, event_id: Optional[str] = None) -> List[Dict[str, Any]]:
    q = {"event": event_id} if event_id else {}
    return [sanitize(p) for p in get_documents(db, "package", q, sort=[("Pg_ID", 1)])]


def get_package(db, package_id: str) -> Dict[str, Any]:
    package = find_package(db, package_id)
    if not package:
        raise NotFound("Package not found")
    return sanitize(package)


def update_package(db, package_id: str, price: Optional[float]) -> Dict[str, Any]:
    if price is None:
        raise ValidationError("No valid fields to update", ["Pg_price"])
    if price < 0:
        raise ValidationError("Pg_price must not be negative", ["Pg_price"])
    updated = update_document(db, "package", {"Pg_ID": package_id}, {"Pg_price": price})
    if not updated:
        raise NotFound("Package not found")
    return sanitize(updated)


def delete_package(db, package_id: str) -> None:
    if db["package"].delete_one({"Pg_ID": package_id}).deleted_count == 0:
        raise NotFound("Package not found")
    logger.info("Deleted package %s", package_id)
