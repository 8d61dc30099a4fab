import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from database import create_document, get_documents, sanitize, to_obj_id, update_document
from errors import NotFound, PermissionDenied, from_pydantic
from schemas import Feedback

logger = logging.getLogger(__name__)


def author_filter(customer_id: str) -> Dict[str, Any]:
    # older rows carry the author under "name"
    return {"$or": [{"customerId": customer_id}, {"name": customer_id}]}


def author_of(doc: Dict[str, Any]) -> Optional[str]:
    return doc.get("customerId") or doc.get("name")


def create_feedback(db, customer_id: str, message: str, rating: Optional[int] = None) -> Dict[str, Any]:
    try:
        fb = Feedback(customerId=customer_id, message=message, rating=rating)
    except PydanticValidationError as e:
        raise from_pydantic(e)
    return sanitize(create_document(db, "feedback", fb.model_dump()))


def list_feedback(db, customer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    q = author_filter(customer_id) if customer_id else {}
    return [sanitize(f) for f in get_documents(db, "feedback", q, sort=[("createdAt", -1)])]


def get_feedback(db, feedback_id: str) -> Dict[str, Any]:
    fb = db["feedback"].find_one({"_id": to_obj_id(feedback_id)})
    if not fb:
        raise NotFound("Feedback not found")
    return fb


def _check_owner(fb: Dict[str, Any], actor: Dict[str, Any], action: str) -> None:
    if actor.get("role") != "admin" and author_of(fb) != actor.get("userId"):
        raise PermissionDenied(f"You can only {action} your own feedback")


def update_feedback(db, feedback_id: str, actor: Dict[str, Any], message: Optional[str] = None,
                    rating: Optional[int] = None) -> Dict[str, Any]:
    fb = get_feedback(db, feedback_id)
    _check_owner(fb, actor, "edit")
    changes: Dict[str, Any] = {}
    if message is not None:
        changes["message"] = message
    if rating is not None:
        changes["rating"] = rating
    try:
        Feedback(customerId=author_of(fb) or "unknown", message=changes.get("message", fb.get("message")),
                 rating=changes.get("rating", fb.get("rating")))
    except PydanticValidationError as e:
        raise from_pydantic(e)
    if not changes:
        return sanitize(fb)
    return sanitize(update_document(db, "feedback", {"_id": fb["_id"]}, changes))


def delete_feedback(db, feedback_id: str, actor: Dict[str, Any]) -> None:
    fb = get_feedback(db, feedback_id)
    _check_owner(fb, actor, "delete")
    db["feedback"].delete_one({"_id": fb["_id"]})
    logger.info("Feedback %s deleted by %s", feedback_id, actor.get("userId"))
