"""
Database Schemas for the Event Planning API

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Event -> "event"), except the
payment variants, which share the "payment" collection and are told apart by
their `paymentType` tag.

We will use these collections:
- user: unified accounts (customer, admin)
- customer, admin: legacy account collections, kept for backward compatibility
- event, package: the catalog
- payment: Card and Portal payments
- feedback: customer feedback
- counters: id sequences (see ids.py)
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

Role = Literal["customer", "admin"]
PaymentStatus = Literal["confirmed", "pending", "refunded", "cancelled"]
PaymentType = Literal["Card", "Portal"]

# Bookkeeping fields stored documents carry (__v on rows written by the old Mongoose models)
STORAGE_FIELDS = ("_id", "__v", "createdAt", "updatedAt")

MASKED_CARD = re.compile(r"(\*{4} ){3}\d{4}")
EXPIRY = re.compile(r"(0[1-9]|1[0-2])/\d{2}")


def mask_card_number(value: str) -> str:
    if MASKED_CARD.fullmatch(value):
        return value
    digits = re.sub(r"[\s-]", "", value)
    if not digits.isdigit() or not 12 <= len(digits) <= 19:
        raise ValueError("cardNumber must contain 12 to 19 digits")
    return f"**** **** **** {digits[-4:]}"


def strip_storage(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k not in STORAGE_FIELDS}


class User(BaseModel):
    userId: str = Field(..., min_length=1, description="Business key, e.g. CUS01 or AD01")
    userName: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, description="BCrypt hash, or legacy plaintext")
    phoneNo: str = Field(..., min_length=1)
    role: Role
    firstName: Optional[str] = None
    lastName: Optional[str] = None

    @model_validator(mode="after")
    def customer_has_names(self):
        # admins may go without names, customers may not
        if self.role == "customer" and not ((self.firstName or "").strip() and (self.lastName or "").strip()):
            raise ValueError("customers require firstName and lastName")
        return self


class LegacyCustomer(BaseModel):
    C_ID: str = Field(..., min_length=1)
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    userName: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, description="Plaintext in the legacy collection")
    phoneNo: str = Field(..., min_length=1)


class LegacyAdmin(BaseModel):
    A_ID: str = Field(..., min_length=1)
    userName: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    phoneNo: str = Field(..., min_length=1)


class Event(BaseModel):
    E_ID: str = Field(..., min_length=1)
    E_name: str = Field(..., min_length=1)
    E_description: str = Field(..., min_length=1)
    status: str = Field("active")


class Package(BaseModel):
    Pg_ID: str = Field(..., min_length=1)
    Pg_price: float = Field(..., ge=0)
    event: str = Field(..., min_length=1, description="Reference to event E_ID")


class PaymentBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    P_ID: str = Field(..., min_length=1)
    p_amount: float = Field(..., gt=0)
    p_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    customerId: str = Field(..., min_length=1)
    eventId: str = Field(..., min_length=1)
    packageId: str = Field(..., min_length=1)
    status: PaymentStatus = "confirmed"


class CardPayment(PaymentBase):
    paymentType: Literal["Card"] = "Card"
    c_type: str = Field(..., min_length=1)
    c_description: str = ""
    cardNumber: str = Field(..., description="Masked; only the last four digits are kept")
    cardholderName: str = Field(..., min_length=1)
    expiryDate: str = Field(..., description="MM/YY")

    @field_validator("cardNumber")
    @classmethod
    def mask(cls, v: str) -> str:
        return mask_card_number(v)

    @field_validator("expiryDate")
    @classmethod
    def expiry_format(cls, v: str) -> str:
        if not EXPIRY.fullmatch(v):
            raise ValueError("expiryDate must be MM/YY")
        return v


class PortalPayment(PaymentBase):
    paymentType: Literal["Portal"] = "Portal"
    p_description: str = ""
    reference: str = Field(..., min_length=1, description="Proof-of-transfer code")
    bankSlipUrl: str = Field(..., min_length=1, description="URL of the uploaded bank slip")


Payment = Annotated[Union[CardPayment, PortalPayment], Field(discriminator="paymentType")]
payment_adapter = TypeAdapter(Payment)


class Feedback(BaseModel):
    customerId: str = Field(..., min_length=1, description="Author reference (userId or C_ID)")
    message: str = Field(..., min_length=1)
    rating: Optional[int] = Field(None, ge=0, le=5)
