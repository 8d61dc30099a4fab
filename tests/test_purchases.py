from datetime import datetime, timezone

import payments
import purchases
from conftest import card_fields, portal_fields
from database import create_document


def day(n):
    return datetime(2024, 6, n, tzinfo=timezone.utc)


def test_purchase_is_composed_from_all_sources(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    create_document(db, "feedback", {"customerId": "CUS01", "message": "Lovely day", "rating": 5})

    [purchase] = purchases.customer_purchases(db)

    assert purchase["customer"] == {"customerId": "CUS01", "name": "Jane Doe", "phoneNo": "0771234567"}
    assert purchase["event"] == {"eventId": "EVT001", "name": "Wedding"}
    assert purchase["package"] == {"packageId": "PG001", "price": 1500.0}
    assert purchase["payment"]["paymentId"] == "PMT0001"
    assert purchase["payment"]["amount"] == 1500.0
    assert purchase["payment"]["status"] == "confirmed"
    assert purchase["feedback"] == {"rating": 5, "comment": "Lovely day"}


def test_payments_with_dangling_references_are_skipped(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    payments.create_portal_payment(db, portal_fields(p_date=day(2)))
    payments.create_card_payment(db, card_fields(p_date=day(3)))
    db["package"].delete_one({"Pg_ID": "PG001"})
    create_document(db, "package", {"Pg_ID": "PG002", "Pg_price": 900.0, "event": "EVT001"})
    db["payment"].update_one({"P_ID": "PMT0002"}, {"$set": {"packageId": "PG002"}})

    assert [p["payment"]["paymentId"] for p in purchases.customer_purchases(db)] == ["PMT0002"]


def test_missing_event_is_skipped(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields())
    db["event"].delete_many({})
    assert purchases.customer_purchases(db) == []


def test_unknown_customer_is_skipped(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    payments.create_card_payment(db, card_fields(customerId="CUS77", p_date=day(2)))
    assert [p["customer"]["customerId"] for p in purchases.customer_purchases(db)] == ["CUS01"]


def test_legacy_customer_resolves_by_c_id(db, catalog_data):
    create_document(db, "customer", {"C_ID": "CUS04", "firstName": "Old", "lastName": "Timer",
                                     "userName": "oldie", "password": "plain", "phoneNo": "55"})
    payments.create_card_payment(db, card_fields(customerId="CUS04"))

    [purchase] = purchases.customer_purchases(db)
    assert purchase["customer"] == {"customerId": "CUS04", "name": "Old Timer", "phoneNo": "55"}
    assert purchase["feedback"] is None


def test_name_falls_back_to_legacy_name_field(db, catalog_data):
    create_document(db, "customer", {"C_ID": "CUS06", "name": "Single Field", "userName": "sf",
                                     "password": "plain", "phoneNo": "1"})
    create_document(db, "customer", {"C_ID": "CUS07", "userName": "anon", "password": "plain", "phoneNo": "2"})
    payments.create_card_payment(db, card_fields(customerId="CUS06", p_date=day(2)))
    payments.create_card_payment(db, card_fields(customerId="CUS07", p_date=day(1)))

    assert [p["customer"]["name"] for p in purchases.customer_purchases(db)] == ["Single Field", "Unknown"]


def test_first_feedback_is_attached_to_every_purchase(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    payments.create_card_payment(db, card_fields(p_date=day(2)))
    create_document(db, "feedback", {"name": "CUS01", "message": "first", "rating": 4})
    create_document(db, "feedback", {"customerId": "CUS01", "message": "second", "rating": 2})

    listed = purchases.customer_purchases(db)
    assert [p["feedback"]["comment"] for p in listed] == ["first", "first"]


def test_newest_purchase_first(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields(p_date=day(5)))
    payments.create_card_payment(db, card_fields(p_date=day(9)))
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    assert [p["payment"]["paymentId"] for p in purchases.customer_purchases(db)] == ["PMT0002", "PMT0001", "PMT0003"]


def test_one_broken_payment_does_not_abort_the_listing(db, catalog_data, customer, monkeypatch):
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    payments.create_card_payment(db, card_fields(p_date=day(2)))
    real_display_name = purchases.display_name
    calls = []

    def flaky(doc):
        calls.append(doc)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return real_display_name(doc)

    monkeypatch.setattr(purchases, "display_name", flaky)
    assert [p["payment"]["paymentId"] for p in purchases.customer_purchases(db)] == ["PMT0001"]


def test_customer_events_lists_own_purchases(db, catalog_data, customer):
    payments.create_card_payment(db, card_fields(p_date=day(1)))
    payments.create_portal_payment(db, portal_fields(p_date=day(2)))
    payments.create_card_payment(db, card_fields(customerId="CUS02", p_date=day(3)))

    events = purchases.customer_events(db, "CUS01")
    assert [e["payment"]["P_ID"] for e in events] == ["PMT0002", "PMT0001"]
    assert events[0]["payment"]["reference"] == "TRX-99812"
    assert events[1]["payment"]["cardDetails"]["cardNumber"] == "**** **** **** 1111"
    assert events[0]["event"]["E_name"] == "Wedding"
    assert events[0]["package"] == {"Pg_ID": "PG001", "Pg_price": 1500.0}
