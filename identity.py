"""
Accounts: the unified "user" collection plus read fallbacks to the legacy
"customer" and "admin" collections.

The legacy collections are a transitional source only. Set LEGACY_FALLBACK=false
once `migrate_users.py` has been run everywhere to stop every legacy read.
"""

import hmac
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

from passlib.context import CryptContext
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

import ids
from database import create_document, sanitize, transaction, update_document
from errors import (AuthenticationFailed, Conflict, NotFound, ServiceError, TransactionAborted,
                    ValidationError, from_pydantic)
from feedback import author_filter
from schemas import LegacyAdmin, LegacyCustomer, User

logger = logging.getLogger(__name__)

LEGACY_FALLBACK = os.getenv("LEGACY_FALLBACK", "true").lower() not in ("0", "false", "no")

# a complete bcrypt hash; anything else is a password still to be hashed
BCRYPT_HASH = re.compile(r"\$2[abxy]?\$\d{2}\$[./A-Za-z0-9]{53}")
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
)

REQUIRED_FIELDS = {
    "customer": ["userName", "password", "phoneNo", "firstName", "lastName"],
    "admin": ["userName", "password", "phoneNo"],
}
UPDATABLE_FIELDS = ("firstName", "lastName", "userName", "password", "phoneNo")
ADMIN_UPDATABLE_FIELDS = ("userName", "password", "phoneNo")

# Lookup order with each collection's id field
ACCOUNT_SOURCES = (("user", "userId"), ("customer", "C_ID"), ("admin", "A_ID"))


# Passwords

def is_hashed(password: str) -> bool:
    return bool(password) and BCRYPT_HASH.fullmatch(password) is not None


def prepare_password(password: str) -> str:
    """Hash a password unless it already is one."""
    return password if is_hashed(password) else pwd_context.hash(password)


def verify_password(password: str, stored: str) -> bool:
    if not stored:
        return False
    if not is_hashed(stored):
        # legacy plaintext, upgraded on the next password change
        return hmac.compare_digest(stored.encode(), password.encode())
    try:
        return pwd_context.verify(password, stored)
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Shapes

def normalize(doc: Dict[str, Any], source: str) -> Dict[str, Any]:
    """Same shape whichever collection the account came from."""
    if source == "customer":
        user_id, role = doc.get("C_ID"), "customer"
    elif source == "admin":
        user_id, role = doc.get("A_ID"), "admin"
    else:
        user_id, role = doc.get("userId"), doc.get("role")
    out = {
        "userId": user_id,
        "role": role,
        "userName": doc.get("userName"),
        "phoneNo": doc.get("phoneNo"),
        "createdAt": doc.get("createdAt"),
        "updatedAt": doc.get("updatedAt"),
    }
    if doc.get("firstName") is not None or role == "customer":
        out["firstName"] = doc.get("firstName")
        out["lastName"] = doc.get("lastName")
    return out


def public(doc: Dict[str, Any]) -> Dict[str, Any]:
    return sanitize({k: v for k, v in doc.items() if k != "password"})


def display_name(doc: Optional[Dict[str, Any]]) -> str:
    if not doc:
        return "Unknown"
    if doc.get("firstName") and doc.get("lastName"):
        return f"{doc['firstName']} {doc['lastName']}"
    return doc.get("name") or "Unknown"


# Lookups

def _lookup(db, user_name: Optional[str] = None,
            user_id: Optional[str] = None) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    # per collection a userName match wins over an id match
    sources = ACCOUNT_SOURCES if LEGACY_FALLBACK else ACCOUNT_SOURCES[:1]
    for collection, key in sources:
        doc = db[collection].find_one({"userName": user_name}) if user_name is not None else None
        if doc is None and user_id is not None:
            doc = db[collection].find_one({key: user_id})
        if doc:
            return doc, collection
    return None, None


def find_user_by_credential(db, user_name_or_id: str) -> Dict[str, Any]:
    doc, source = _lookup(db, user_name=user_name_or_id, user_id=user_name_or_id)
    if not doc:
        raise NotFound(f"User {user_name_or_id} not found")
    return normalize(doc, source)


def find_user_by_id(db, user_id: str) -> Dict[str, Any]:
    doc, source = _lookup(db, user_id=user_id)
    if not doc:
        raise NotFound(f"User {user_id} not found")
    return normalize(doc, source)


def authenticate(db, user_name: str, password: str) -> Dict[str, Any]:
    doc, source = _lookup(db, user_name=user_name)
    if not doc or not verify_password(password, doc.get("password", "")):
        raise AuthenticationFailed()
    return normalize(doc, source)


def resolve_customer(db, customer_id: str) -> Optional[Dict[str, Any]]:
    """Unified record by userId, then legacy customer by C_ID."""
    user = db["user"].find_one({"userId": customer_id})
    if user:
        return user
    if LEGACY_FALLBACK:
        return db["customer"].find_one({"C_ID": customer_id})
    return None


def get_user(db, user_id: str, role: Optional[str] = None) -> Dict[str, Any]:
    q: Dict[str, Any] = {"userId": user_id}
    if role:
        q["role"] = role
    user = db["user"].find_one(q)
    if not user:
        raise NotFound(f"{'Admin' if role == 'admin' else 'User'} not found")
    return public(user)


def list_users(db, role: Optional[str] = None) -> List[Dict[str, Any]]:
    q = {"role": role} if role else {}
    return [public(u) for u in db["user"].find(q).sort([("userId", 1)])]


# Writes

def insert_user(db, user: User) -> Dict[str, Any]:
    doc = user.model_dump(exclude_none=True)
    doc["password"] = prepare_password(doc["password"])
    try:
        return create_document(db, "user", doc)
    except DuplicateKeyError:
        raise Conflict("User ID or username already exists")


def create_user(db, role: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    if role not in REQUIRED_FIELDS:
        raise ValidationError(f"Unknown role {role}", ["role"])
    missing = [f for f in REQUIRED_FIELDS[role] if not str(fields.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"All fields are required: {', '.join(missing)}", missing)

    user_id = fields.get("userId") or ids.allocate_id(db, role)
    # legacy collections are deliberately not consulted here
    if db["user"].find_one({"$or": [{"userId": user_id}, {"userName": fields["userName"]}]}):
        raise Conflict("User ID or username already exists")
    try:
        user = User(
            userId=user_id,
            userName=fields["userName"],
            password=fields["password"],
            phoneNo=fields["phoneNo"],
            role=role,
            firstName=fields.get("firstName"),
            lastName=fields.get("lastName"),
        )
    except PydanticValidationError as e:
        raise from_pydantic(e)
    doc = insert_user(db, user)
    logger.info("Created %s %s", role, user_id)
    return public(doc)


def split_legacy_name(fields: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(fields)
    name = data.pop("name", None)
    if name and not data.get("firstName") and not data.get("lastName"):
        parts = name.strip().split(" ")
        data["firstName"] = parts[0] if parts else ""
        data["lastName"] = " ".join(parts[1:])
    return data


def update_user(db, user_id: str, fields: Dict[str, Any], role: Optional[str] = None) -> Dict[str, Any]:
    allowed = ADMIN_UPDATABLE_FIELDS if role == "admin" else UPDATABLE_FIELDS
    data = split_legacy_name(fields)
    changes = {k: v for k, v in data.items() if k in allowed and v is not None}

    q: Dict[str, Any] = {"userId": user_id}
    if role:
        q["role"] = role
    existing = db["user"].find_one(q)
    if not existing:
        raise NotFound(f"{'Admin' if role == 'admin' else 'User'} not found")

    if existing.get("role") == "customer":
        blank = [f for f in ("firstName", "lastName") if f in changes and not str(changes[f]).strip()]
        if blank:
            raise ValidationError(f"Customers require {', '.join(blank)}", blank)
    for f in ("userName", "phoneNo"):
        if f in changes and not str(changes[f]).strip():
            raise ValidationError(f"{f} cannot be empty", [f])

    if "password" in changes:
        if not changes["password"] or changes["password"] == existing.get("password"):
            changes.pop("password")
        else:
            changes["password"] = prepare_password(changes["password"])

    if not changes:
        return public(existing)
    try:
        updated = update_document(db, "user", q, changes)
    except DuplicateKeyError:
        raise Conflict("Username already exists")
    if not updated:
        raise NotFound("User not found")
    return public(updated)


def _delete_row(db, collection: str, key: str, user_id: str, session) -> int:
    return db[collection].delete_one({key: user_id}, session=session).deleted_count


def cascade_delete(db, collection: str, key: str, user_id: str) -> Dict[str, Any]:
    """Delete an account and its feedback as one transaction."""
    try:
        with transaction(db) as session:
            doc = db[collection].find_one({key: user_id}, session=session)
            if not doc:
                raise NotFound(f"{'Customer' if collection == 'customer' else 'User'} not found")
            deleted_feedback = db["feedback"].delete_many(author_filter(user_id), session=session).deleted_count
            _delete_row(db, collection, key, user_id, session)
    except ServiceError:
        raise
    except Exception as e:
        logger.exception("Cascade delete of %s %s aborted", collection, user_id)
        raise TransactionAborted(f"Failed to delete {user_id}; no changes were applied") from e
    logger.info("Deleted %s %s with %d feedback rows", collection, user_id, deleted_feedback)
    return {"deletedUser": public(doc), "deletedFeedback": deleted_feedback}


def delete_user(db, user_id: str, role: Optional[str] = None) -> Dict[str, Any]:
    q: Dict[str, Any] = {"userId": user_id}
    if role:
        q["role"] = role
    user = db["user"].find_one(q)
    if not user:
        raise NotFound(f"{'Admin' if role == 'admin' else 'User'} not found")
    if user["role"] == "customer":
        return cascade_delete(db, "user", "userId", user_id)
    db["user"].delete_one({"userId": user_id, "role": "admin"})
    logger.info("Deleted admin %s", user_id)
    return {"deletedUser": public(user), "deletedFeedback": 0}


# Legacy customers

def _require_legacy():
    if not LEGACY_FALLBACK:
        raise NotFound("Legacy account records are no longer served")


def list_legacy_customers(db) -> List[Dict[str, Any]]:
    _require_legacy()
    return [public(c) for c in db["customer"].find({}).sort([("C_ID", 1)])]


def get_legacy_customer(db, c_id: str) -> Dict[str, Any]:
    _require_legacy()
    customer = db["customer"].find_one({"C_ID": c_id})
    if not customer:
        raise NotFound("Customer not found")
    return public(customer)


def create_legacy_customer(db, fields: Dict[str, Any]) -> Dict[str, Any]:
    _require_legacy()
    data = dict(fields)
    if not data.get("C_ID"):
        data["C_ID"] = ids.allocate_id(db, "legacy_customer")
    try:
        customer = LegacyCustomer(**data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "All fields are required")
    try:
        doc = create_document(db, "customer", customer.model_dump())
    except DuplicateKeyError:
        raise Conflict("Customer ID or username already exists")
    return public(doc)


def update_legacy_customer(db, c_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    _require_legacy()
    changes = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS and v is not None}
    if not db["customer"].find_one({"C_ID": c_id}):
        raise NotFound("Customer not found")
    try:
        updated = update_document(db, "customer", {"C_ID": c_id}, changes) if changes else db["customer"].find_one({"C_ID": c_id})
    except DuplicateKeyError:
        raise Conflict("Username already exists")
    return public(updated)


def delete_legacy_customer(db, c_id: str) -> Dict[str, Any]:
    _require_legacy()
    return cascade_delete(db, "customer", "C_ID", c_id)


# Legacy admins

def list_legacy_admins(db) -> List[Dict[str, Any]]:
    _require_legacy()
    return [public(a) for a in db["admin"].find({}).sort([("A_ID", 1)])]


def get_legacy_admin(db, a_id: str) -> Dict[str, Any]:
    _require_legacy()
    admin = db["admin"].find_one({"A_ID": a_id})
    if not admin:
        raise NotFound("Admin not found")
    return public(admin)


def create_legacy_admin(db, fields: Dict[str, Any]) -> Dict[str, Any]:
    _require_legacy()
    data = dict(fields)
    if not data.get("A_ID"):
        data["A_ID"] = ids.allocate_id(db, "legacy_admin")
    try:
        admin = LegacyAdmin(**data)
    except PydanticValidationError as e:
        raise from_pydantic(e, "All fields are required")
    try:
        doc = create_document(db, "admin", admin.model_dump())
    except DuplicateKeyError:
        raise Conflict("Admin ID or username already exists")
    logger.info("Created legacy admin %s", admin.A_ID)
    return public(doc)


def update_legacy_admin(db, a_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    _require_legacy()
    changes = {k: v for k, v in fields.items() if k in ADMIN_UPDATABLE_FIELDS and v is not None}
    blank = [k for k, v in changes.items() if not str(v).strip()]
    if blank:
        raise ValidationError(f"{', '.join(blank)} cannot be empty", blank)
    existing = db["admin"].find_one({"A_ID": a_id})
    if not existing:
        raise NotFound("Admin not found")
    if not changes:
        return public(existing)
    try:
        updated = update_document(db, "admin", {"A_ID": a_id}, changes)
    except DuplicateKeyError:
        raise Conflict("Username already exists")
    return public(updated)


def delete_legacy_admin(db, a_id: str) -> Dict[str, Any]:
    _require_legacy()
    admin = db["admin"].find_one_and_delete({"A_ID": a_id})
    if not admin:
        raise NotFound("Admin not found")
    logger.info("Deleted legacy admin %s", a_id)
    return public(admin)
