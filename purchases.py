"""
Purchase listings assembled from payments, the catalog, accounts and feedback.

There is no referential integrity in the store, so a payment whose event,
package or customer no longer resolves is left out of the listing rather than
reported. One bad payment never aborts the whole listing.

Feedback is not tied to a purchase: the customer's first feedback row is
attached to every one of their purchases.
"""

import logging
from typing import Any, Dict, List

from catalog import find_event, find_package
from feedback import author_filter
from identity import display_name, resolve_customer
from payments import summarize

logger = logging.getLogger(__name__)


def customer_purchases(db) -> List[Dict[str, Any]]:
    purchases = []
    for payment in db["payment"].find({}).sort([("p_date", -1)]):
        try:
            event = find_event(db, payment.get("eventId"))
            package = find_package(db, payment.get("packageId"))
            if not event or not package:
                logger.warning("Skipping payment %s: event or package missing", payment.get("P_ID"))
                continue
            customer = resolve_customer(db, payment.get("customerId"))
            if not customer:
                logger.warning("Skipping payment %s: customer %s missing", payment.get("P_ID"), payment.get("customerId"))
                continue
            feedback = db["feedback"].find_one(author_filter(payment.get("customerId")))
            purchases.append({
                "customer": {
                    "customerId": customer.get("userId") or customer.get("C_ID"),
                    "name": display_name(customer),
                    "phoneNo": customer.get("phoneNo"),
                },
                "event": {"eventId": event["E_ID"], "name": event.get("E_name")},
                "payment": {
                    "paymentId": payment.get("P_ID"),
                    "amount": payment.get("p_amount"),
                    "date": payment.get("p_date"),
                    "status": payment.get("status"),
                },
                "package": {"packageId": package["Pg_ID"], "price": package.get("Pg_price")},
                "feedback": {"rating": feedback.get("rating"), "comment": feedback.get("message")} if feedback else None,
            })
        except Exception:
            logger.exception("Error processing payment %s", payment.get("P_ID"))
    return purchases


def customer_events(db, customer_id: str) -> List[Dict[str, Any]]:
    """A customer's own payments, newest first, with the event and package bought."""
    events = []
    for payment in db["payment"].find({"customerId": customer_id}).sort([("p_date", -1)]):
        try:
            event = find_event(db, payment.get("eventId"))
            package = find_package(db, payment.get("packageId"))
            if not event or not package:
                continue
            events.append({
                "payment": summarize(payment),
                "event": {
                    "E_ID": event["E_ID"],
                    "E_name": event.get("E_name"),
                    "E_description": event.get("E_description"),
                    "status": event.get("status"),
                },
                "package": {"Pg_ID": package["Pg_ID"], "Pg_price": package.get("Pg_price")},
            })
        except Exception:
            logger.exception("Error processing payment %s", payment.get("P_ID"))
    return events
