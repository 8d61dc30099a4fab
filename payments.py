"""
Card and Portal payments.

Both variants live in the "payment" collection, tagged by `paymentType`.
Every write goes through the discriminated `schemas.Payment` union, so a
stored payment always carries exactly one variant's fields and a card number
is never written unmasked.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import ids
from catalog import find_event, find_package
from database import create_document, now, sanitize, update_document
from errors import (Conflict, InvalidStateTransition, NotFound, PermissionDenied, ValidationError,
                    from_pydantic)
from schemas import PaymentType, mask_card_number, payment_adapter, strip_storage

logger = logging.getLogger(__name__)

COMMON_REQUIRED = ("p_amount", "customerId", "eventId", "packageId")
VARIANT_REQUIRED = {
    "Card": ("c_type", "cardNumber", "cardholderName", "expiryDate"),
    "Portal": ("reference", "bankSlipUrl"),
}
VARIANT_UPDATABLE = {
    "Card": ("p_amount", "c_description"),
    "Portal": ("p_amount", "p_description", "bankSlipUrl"),
}


def _variant(payment_type: Optional[str]) -> str:
    if payment_type not in VARIANT_REQUIRED:
        raise ValidationError(f"Unknown payment type {payment_type}", ["paymentType"])
    return payment_type


def public(payment: Dict[str, Any]) -> Dict[str, Any]:
    d = sanitize(payment)
    if d and d.get("cardNumber"):
        try:
            d["cardNumber"] = mask_card_number(d["cardNumber"])
        except ValueError:
            d["cardNumber"] = "****"
    return d


def _validate(data: Dict[str, Any]):
    try:
        return payment_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise from_pydantic(e)


def create_payment(db, payment_type: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    variant = _variant(payment_type)
    data = {k: v for k, v in fields.items() if v is not None and k not in ("P_ID", "paymentType", "status")}
    missing = [f for f in COMMON_REQUIRED + VARIANT_REQUIRED[variant] if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

    if not find_event(db, data["eventId"]):
        raise NotFound(f"Event {data['eventId']} not found")
    if not find_package(db, data["packageId"]):
        raise NotFound(f"Package {data['packageId']} not found")

    payment = _validate({**data, "paymentType": variant, "P_ID": ids.allocate_id(db, "payment")})
    try:
        doc = create_document(db, "payment", payment.model_dump())
    except DuplicateKeyError:
        raise Conflict(f"Payment {payment.P_ID} already exists")
    logger.info("Recorded %s payment %s for %s", variant, payment.P_ID, payment.customerId)
    return public(doc)


def create_card_payment(db, fields: Dict[str, Any]) -> Dict[str, Any]:
    return create_payment(db, "Card", fields)


def create_portal_payment(db, fields: Dict[str, Any]) -> Dict[str, Any]:
    return create_payment(db, "Portal", fields)


def list_payments(db, payment_type: Optional[PaymentType] = None, customer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    q: Dict[str, Any] = {}
    if payment_type:
        q["paymentType"] = _variant(payment_type)
    if customer_id:
        q["customerId"] = customer_id
    return [public(p) for p in db["payment"].find(q).sort([("p_date", -1)])]


def find_payment(db, payment_id: str) -> Dict[str, Any]:
    payment = db["payment"].find_one({"P_ID": payment_id})
    if not payment:
        raise NotFound("Payment not found")
    return payment


def get_payment(db, payment_id: str) -> Dict[str, Any]:
    return public(find_payment(db, payment_id))


def update_payment(db, payment_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    doc = find_payment(db, payment_id)
    variant = _variant(doc.get("paymentType"))
    changes = {k: fields[k] for k in VARIANT_UPDATABLE[variant] if fields.get(k) is not None}

    merged = _validate({**strip_storage(doc), **changes})
    if variant == "Card" and merged.cardNumber != doc.get("cardNumber"):
        # rows written before masking was enforced get masked on their next update
        changes["cardNumber"] = merged.cardNumber
    if not changes:
        return public(doc)
    return public(update_document(db, "payment", {"P_ID": payment_id}, changes))


def _transition(db, payment_id: str, source: str, target: str, extra: Optional[Dict[str, Any]] = None):
    q = {"P_ID": payment_id, "status": source, **(extra or {})}
    return db["payment"].find_one_and_update(
        q,
        {"$set": {"status": target, "updatedAt": now()}},
        return_document=ReturnDocument.AFTER,
    )


def refund_payment(db, payment_id: str) -> Dict[str, Any]:
    updated = _transition(db, payment_id, "confirmed", "refunded")
    if updated:
        logger.info("Refunded payment %s", payment_id)
        return public(updated)
    current = find_payment(db, payment_id)
    raise InvalidStateTransition(f"Only confirmed payments can be refunded; payment is {current.get('status')}")


def cancel_payment(db, payment_id: str, requesting_customer_id: str) -> Dict[str, Any]:
    current = find_payment(db, payment_id)
    if current.get("customerId") != requesting_customer_id:
        raise PermissionDenied("You can only cancel your own payments")
    updated = _transition(db, payment_id, "confirmed", "cancelled", {"customerId": requesting_customer_id})
    if not updated:
        raise InvalidStateTransition(f"Only confirmed payments can be cancelled; payment is {current.get('status')}")
    logger.info("Customer %s cancelled payment %s", requesting_customer_id, payment_id)
    return public(updated)


def delete_payment(db, payment_id: str) -> None:
    if db["payment"].delete_one({"P_ID": payment_id}).deleted_count == 0:
        raise NotFound("Payment not found")
    logger.info("Deleted payment %s", payment_id)


def summarize(payment: Dict[str, Any]) -> Dict[str, Any]:
    """Type-specific view of a payment for a customer's own listing."""
    summary = {
        "id": str(payment.get("_id")),
        "P_ID": payment.get("P_ID"),
        "amount": payment.get("p_amount"),
        "date": payment.get("p_date"),
        "status": payment.get("status"),
        "paymentType": payment.get("paymentType"),
        "description": None,
        "reference": None,
        "bankSlipUrl": None,
        "cardDetails": None,
    }
    tag = payment.get("paymentType")
    if tag == "Card":
        summary["description"] = payment.get("c_description")
        summary["cardDetails"] = {
            "cardNumber": public(payment).get("cardNumber"),
            "cardholderName": payment.get("cardholderName"),
        }
    elif tag == "Portal":
        summary["description"] = payment.get("p_description")
        summary["reference"] = payment.get("reference")
        summary["bankSlipUrl"] = payment.get("bankSlipUrl")
    else:
        logger.warning("Payment %s has unknown type %s", payment.get("P_ID"), tag)
    return summary
