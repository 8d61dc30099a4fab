from datetime import datetime, timezone

import pytest

import payments
from conftest import card_fields, portal_fields
from database import create_document
from errors import InvalidStateTransition, NotFound, PermissionDenied, ValidationError


def test_card_payment_is_masked_and_numbered(db, catalog_data):
    created = payments.create_card_payment(db, card_fields())

    assert created["P_ID"] == "PMT0001"
    assert created["paymentType"] == "Card"
    assert created["status"] == "confirmed"
    assert created["cardNumber"] == "**** **** **** 1111"

    stored = db["payment"].find_one({"P_ID": "PMT0001"})
    assert "4111111111111111" not in str(stored)
    assert "reference" not in stored


def test_second_payment_gets_next_id(db, catalog_data):
    payments.create_card_payment(db, card_fields())
    created = payments.create_portal_payment(db, portal_fields())
    assert created["P_ID"] == "PMT0002"
    assert created["paymentType"] == "Portal"
    assert "cardNumber" not in created


def test_portal_payment_requires_reference_and_slip(db, catalog_data):
    with pytest.raises(ValidationError) as exc:
        payments.create_portal_payment(db, portal_fields(reference=None, bankSlipUrl=""))
    assert exc.value.fields == ["reference", "bankSlipUrl"]
    assert db["payment"].count_documents({}) == 0


def test_missing_common_fields_are_reported(db, catalog_data):
    with pytest.raises(ValidationError) as exc:
        payments.create_card_payment(db, card_fields(p_amount=None, customerId=None))
    assert exc.value.fields == ["p_amount", "customerId"]


def test_variant_fields_do_not_mix(db, catalog_data):
    with pytest.raises(ValidationError) as exc:
        payments.create_card_payment(db, card_fields(reference="TRX-1"))
    assert "reference" in exc.value.fields
    assert db["payment"].count_documents({}) == 0


@pytest.mark.parametrize("overrides,field", [
    ({"p_amount": 0}, "p_amount"),
    ({"p_amount": -10}, "p_amount"),
    ({"cardNumber": "1234"}, "cardNumber"),
    ({"expiryDate": "13/27"}, "expiryDate"),
])
def test_invalid_card_values(db, catalog_data, overrides, field):
    with pytest.raises(ValidationError) as exc:
        payments.create_card_payment(db, card_fields(**overrides))
    assert field in exc.value.fields


def test_unknown_event_or_package_is_named(db, catalog_data):
    with pytest.raises(NotFound) as exc:
        payments.create_card_payment(db, card_fields(eventId="EVT404"))
    assert "EVT404" in exc.value.detail

    with pytest.raises(NotFound) as exc:
        payments.create_card_payment(db, card_fields(packageId="PG404"))
    assert "PG404" in exc.value.detail


def test_unknown_payment_type(db, catalog_data):
    with pytest.raises(ValidationError):
        payments.create_payment(db, "Cash", card_fields())


def test_list_is_newest_first_and_filterable(db, catalog_data):
    payments.create_card_payment(db, card_fields(p_date=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    payments.create_portal_payment(db, portal_fields(p_date=datetime(2024, 3, 1, tzinfo=timezone.utc)))
    payments.create_card_payment(db, card_fields(customerId="CUS02", p_date=datetime(2024, 2, 1, tzinfo=timezone.utc)))

    assert [p["P_ID"] for p in payments.list_payments(db)] == ["PMT0002", "PMT0003", "PMT0001"]
    assert [p["P_ID"] for p in payments.list_payments(db, "Card")] == ["PMT0003", "PMT0001"]
    assert [p["P_ID"] for p in payments.list_payments(db, customer_id="CUS02")] == ["PMT0003"]


def test_update_only_touches_variant_fields(db, catalog_data):
    payments.create_card_payment(db, card_fields())
    updated = payments.update_payment(db, "PMT0001", {
        "p_amount": 1200.0, "c_description": "Discounted", "p_description": "ignored", "bankSlipUrl": "x",
    })
    assert updated["p_amount"] == 1200.0
    assert updated["c_description"] == "Discounted"
    assert "p_description" not in updated
    assert "bankSlipUrl" not in updated


def test_portal_update(db, catalog_data):
    payments.create_portal_payment(db, portal_fields())
    updated = payments.update_payment(db, "PMT0001", {"bankSlipUrl": "http://localhost:8000/uploads/bank-slips/new.png"})
    assert updated["bankSlipUrl"].endswith("new.png")


def test_update_rejects_invalid_amount(db, catalog_data):
    payments.create_card_payment(db, card_fields())
    with pytest.raises(ValidationError):
        payments.update_payment(db, "PMT0001", {"p_amount": -1})
    assert db["payment"].find_one({"P_ID": "PMT0001"})["p_amount"] == 1500.0


def test_unmasked_legacy_row_is_masked(db, catalog_data):
    create_document(db, "payment", {
        "P_ID": "PMT0007", "__v": 0, "paymentType": "Card", "p_amount": 100.0,
        "p_date": datetime(2023, 5, 1, tzinfo=timezone.utc), "customerId": "CUS01",
        "eventId": "EVT001", "packageId": "PG001", "status": "confirmed",
        "c_type": "Debit Card", "c_description": "", "cardNumber": "5500 0000 0000 0004",
        "cardholderName": "Jane Doe", "expiryDate": "01/26",
    })
    assert payments.get_payment(db, "PMT0007")["cardNumber"] == "**** **** **** 0004"

    payments.update_payment(db, "PMT0007", {"c_description": "touched"})
    assert db["payment"].find_one({"P_ID": "PMT0007"})["cardNumber"] == "**** **** **** 0004"


def test_refund_only_from_confirmed(db, catalog_data):
    payments.create_card_payment(db, card_fields())

    refunded = payments.refund_payment(db, "PMT0001")
    assert refunded["status"] == "refunded"

    with pytest.raises(InvalidStateTransition):
        payments.refund_payment(db, "PMT0001")
    assert db["payment"].find_one({"P_ID": "PMT0001"})["status"] == "refunded"


def test_refund_unknown_payment(db):
    with pytest.raises(NotFound):
        payments.refund_payment(db, "PMT9999")


def test_cancel_own_confirmed_payment(db, catalog_data):
    payments.create_card_payment(db, card_fields())
    cancelled = payments.cancel_payment(db, "PMT0001", "CUS01")
    assert cancelled["status"] == "cancelled"

    with pytest.raises(InvalidStateTransition):
        payments.cancel_payment(db, "PMT0001", "CUS01")
    with pytest.raises(InvalidStateTransition):
        payments.refund_payment(db, "PMT0001")


def test_cancel_someone_elses_payment(db, catalog_data):
    payments.create_card_payment(db, card_fields())
    with pytest.raises(PermissionDenied):
        payments.cancel_payment(db, "PMT0001", "CUS02")
    assert db["payment"].find_one({"P_ID": "PMT0001"})["status"] == "confirmed"


def test_delete_payment(db, catalog_data):
    payments.create_card_payment(db, card_fields())
    payments.delete_payment(db, "PMT0001")
    assert db["payment"].count_documents({}) == 0
    with pytest.raises(NotFound):
        payments.delete_payment(db, "PMT0001")


def test_summaries_are_type_specific(db, catalog_data):
    card = db["payment"].find_one({"P_ID": payments.create_card_payment(db, card_fields())["P_ID"]})
    portal = db["payment"].find_one({"P_ID": payments.create_portal_payment(db, portal_fields())["P_ID"]})

    card_summary = payments.summarize(card)
    assert card_summary["cardDetails"] == {"cardNumber": "**** **** **** 1111", "cardholderName": "Jane Doe"}
    assert card_summary["reference"] is None

    portal_summary = payments.summarize(portal)
    assert portal_summary["reference"] == "TRX-99812"
    assert portal_summary["cardDetails"] is None
    assert portal_summary["description"] == "Bank transfer"


def test_portal_row_with_mongoose_version_key_updates(db, catalog_data):
    create_document(db, "payment", {
        "P_ID": "PMT0008", "__v": 0, "paymentType": "Portal", "p_amount": 200.0,
        "p_date": datetime(2023, 5, 2, tzinfo=timezone.utc), "customerId": "CUS01",
        "eventId": "EVT001", "packageId": "PG001", "status": "confirmed",
        "p_description": "", "reference": "TRX-1", "bankSlipUrl": "http://localhost:8000/uploads/bank-slips/a.png",
    })
    updated = payments.update_payment(db, "PMT0008", {"p_amount": 250.0})
    assert updated["p_amount"] == 250.0
    assert updated["__v"] == 0
