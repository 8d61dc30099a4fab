import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from fastapi.staticfiles import StaticFiles
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

import catalog
import feedback
import identity
import ids
import payments
import purchases
import storage
from database import ensure_indexes, get_db, sanitize
from errors import PermissionDenied, ServiceError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_db()
    if db is not None:
        ensure_indexes(db)
        logger.info("Connected to database %s", db.name)
    else:
        logger.warning("DATABASE_URL is not set; database routes will fail")
    yield


# App and CORS
app = FastAPI(title="Event Planning API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/uploads", StaticFiles(directory=str(storage.ensure_upload_dirs().parent)), name="uploads")

# Auth setup
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(24 * 60)))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@app.exception_handler(ServiceError)
async def service_error_handler(request, exc: ServiceError):
    content: Dict[str, Any] = {"detail": exc.detail}
    if getattr(exc, "fields", None):
        content["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=content)


# Helpers

def create_access_token(user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user["userId"], "userName": user["userName"], "role": user["role"], "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if payload.get("sub") is None or payload.get("role") not in ("customer", "admin"):
        raise JWTError("Token is missing claims")
    return {"userId": payload["sub"], "userName": payload.get("userName"), "role": payload["role"]}


async def get_current_user(token: str = Depends(oauth2_scheme)):
    try:
        return verify_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def require_role(*roles: str):
    async def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=f"{roles[0].capitalize()} access required")
        return current_user
    return role_dep


def ensure_owner_or_admin(current_user: Dict[str, Any], owner_id: Optional[str]) -> None:
    if current_user.get("role") != "admin" and current_user.get("userId") != owner_id:
        raise PermissionDenied("Access denied")


# Request/Response Models
class LoginRequest(BaseModel):
    userName: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    userType: str
    user: Dict[str, Any]


class CreateCustomerRequest(BaseModel):
    userId: Optional[str] = None
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    userName: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    phoneNo: str = Field(..., min_length=1)


class CreateAdminRequest(BaseModel):
    userId: Optional[str] = None
    userName: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    phoneNo: str = Field(..., min_length=1)


class UpdateUserRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    name: Optional[str] = None
    userName: Optional[str] = None
    password: Optional[str] = None
    phoneNo: Optional[str] = None


class UpdateAdminRequest(BaseModel):
    userName: Optional[str] = None
    password: Optional[str] = None
    phoneNo: Optional[str] = None


class LegacyCustomerRequest(BaseModel):
    C_ID: Optional[str] = None
    firstName: str
    lastName: str
    userName: str
    password: str
    phoneNo: str


class UpdateLegacyCustomerRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    userName: Optional[str] = None
    password: Optional[str] = None
    phoneNo: Optional[str] = None


class LegacyAdminRequest(BaseModel):
    A_ID: Optional[str] = None
    userName: str
    password: str = Field(..., min_length=6)
    phoneNo: str


class UpdateLegacyAdminRequest(BaseModel):
    userName: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    phoneNo: Optional[str] = None


class EventRequest(BaseModel):
    E_ID: Optional[str] = None
    E_name: str
    E_description: str
    status: Optional[str] = None


class UpdateEventRequest(BaseModel):
    E_name: Optional[str] = None
    E_description: Optional[str] = None
    status: Optional[str] = None


class PackageRequest(BaseModel):
    Pg_ID: Optional[str] = None
    Pg_price: float = Field(..., ge=0)
    event: str


class UpdatePackageRequest(BaseModel):
    Pg_price: Optional[float] = None


class CardPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    p_amount: float = Field(..., gt=0)
    customerId: Optional[str] = None
    eventId: str
    packageId: str
    c_type: str = "Credit Card"
    c_description: str = ""
    cardNumber: str
    cardholderName: str
    expiryDate: str


class PortalPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    p_amount: float = Field(..., gt=0)
    customerId: Optional[str] = None
    eventId: str
    packageId: str
    p_description: str = ""
    reference: str
    bankSlipUrl: str


class UpdatePaymentRequest(BaseModel):
    p_amount: Optional[float] = Field(None, gt=0)
    c_description: Optional[str] = None
    p_description: Optional[str] = None
    bankSlipUrl: Optional[str] = None


class FeedbackRequest(BaseModel):
    message: str = Field(..., min_length=1)
    rating: Optional[int] = Field(None, ge=0, le=5)


class UpdateFeedbackRequest(BaseModel):
    message: Optional[str] = None
    rating: Optional[int] = Field(None, ge=0, le=5)


def listing(items):
    return {"count": len(items), "data": items}


def payer_for(current_user: Dict[str, Any], customer_id: Optional[str]) -> str:
    if current_user["role"] == "customer":
        if customer_id and customer_id != current_user["userId"]:
            raise PermissionDenied("Customers can only pay for themselves")
        return current_user["userId"]
    if not customer_id:
        raise HTTPException(status_code=422, detail="customerId is required")
    return customer_id


# Auth Routes
@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db=Depends(get_db)):
    user = identity.authenticate(db, payload.userName, payload.password)
    token = create_access_token(user)
    summary = {"userId": user["userId"], "userName": user["userName"], "phoneNo": user["phoneNo"], "role": user["role"]}
    if user["role"] == "customer":
        summary["name"] = identity.display_name(user)
    return TokenResponse(access_token=token, userType=user["role"], user=summary)


@app.get("/api/auth/me")
def me(current_user=Depends(get_current_user), db=Depends(get_db)):
    user = identity.find_user_by_id(db, current_user["userId"])
    if user["role"] == "customer":
        return {**user, "C_ID": user["userId"], "name": identity.display_name(user)}
    return {**user, "A_ID": user["userId"]}


# User Routes
@app.get("/api/users/generate-customer-id")
def generate_customer_id(db=Depends(get_db)):
    return {"id": ids.next_id(db, "customer")}


@app.get("/api/users/generate-admin-id")
def generate_admin_id(db=Depends(get_db)):
    return {"id": ids.next_id(db, "admin")}


@app.post("/api/users/customer", status_code=201)
def create_customer(payload: CreateCustomerRequest, db=Depends(get_db)):
    return identity.create_user(db, "customer", payload.model_dump())


@app.post("/api/users/admin", status_code=201)
def create_admin(payload: CreateAdminRequest, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Admin created successfully", "admin": identity.create_user(db, "admin", payload.model_dump())}


@app.get("/api/users")
def list_users(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(identity.list_users(db))


@app.get("/api/users/customers")
def list_customers(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(identity.list_users(db, "customer"))


@app.get("/api/users/admins")
def list_admins(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(identity.list_users(db, "admin"))


@app.get("/api/users/admins/{user_id}")
def get_admin(user_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return identity.get_user(db, user_id, role="admin")


@app.put("/api/users/admins/{user_id}")
def update_admin(user_id: str, payload: UpdateAdminRequest, admin=Depends(require_role("admin")), db=Depends(get_db)):
    data = identity.update_user(db, user_id, payload.model_dump(exclude_none=True), role="admin")
    return {"message": "Admin updated successfully", "data": data}


@app.delete("/api/users/admins/{user_id}")
def delete_admin(user_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    result = identity.delete_user(db, user_id, role="admin")
    return {"message": "Admin deleted successfully", "data": result["deletedUser"]}


@app.get("/api/users/{user_id}")
def get_user(user_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    ensure_owner_or_admin(current_user, user_id)
    return identity.get_user(db, user_id)


@app.put("/api/users/{user_id}")
def update_user(user_id: str, payload: UpdateUserRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    ensure_owner_or_admin(current_user, user_id)
    data = identity.update_user(db, user_id, payload.model_dump(exclude_none=True))
    return {"message": "User updated successfully", "data": data}


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    result = identity.delete_user(db, user_id)
    return {
        "message": "User and all related records deleted successfully",
        "deletedUser": result["deletedUser"],
        "deletedRecords": {"feedback": result["deletedFeedback"]},
    }


@app.get("/api/users/{user_id}/events")
def user_events(user_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    ensure_owner_or_admin(current_user, user_id)
    return listing(purchases.customer_events(db, user_id))


# Legacy customer routes
@app.get("/api/customers/generate-id")
def generate_legacy_customer_id(db=Depends(get_db)):
    return {"id": ids.next_id(db, "legacy_customer")}


@app.get("/api/customers")
def list_legacy_customers(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(identity.list_legacy_customers(db))


@app.post("/api/customers", status_code=201)
def create_legacy_customer(payload: LegacyCustomerRequest, db=Depends(get_db)):
    return identity.create_legacy_customer(db, payload.model_dump())


@app.get("/api/customers/{c_id}")
def get_legacy_customer(c_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    ensure_owner_or_admin(current_user, c_id)
    return identity.get_legacy_customer(db, c_id)


@app.put("/api/customers/{c_id}")
def update_legacy_customer(c_id: str, payload: UpdateLegacyCustomerRequest, current_user=Depends(get_current_user),
                           db=Depends(get_db)):
    ensure_owner_or_admin(current_user, c_id)
    data = identity.update_legacy_customer(db, c_id, payload.model_dump(exclude_none=True))
    return {"message": "Customer updated successfully", "data": data}


@app.delete("/api/customers/{c_id}")
def delete_legacy_customer(c_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    result = identity.delete_legacy_customer(db, c_id)
    return {
        "message": "Customer and all related records deleted successfully",
        "deletedRecords": {"feedback": result["deletedFeedback"]},
    }


# Legacy admin routes
@app.get("/api/admins/generate-id")
def generate_legacy_admin_id(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"id": ids.next_id(db, "legacy_admin")}


@app.get("/api/admins")
def list_legacy_admins(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(identity.list_legacy_admins(db))


@app.post("/api/admins", status_code=201)
def create_legacy_admin(payload: LegacyAdminRequest, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"message": "Admin created successfully", "admin": identity.create_legacy_admin(db, payload.model_dump())}


@app.get("/api/admins/{a_id}")
def get_legacy_admin(a_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return identity.get_legacy_admin(db, a_id)


@app.put("/api/admins/{a_id}")
def update_legacy_admin(a_id: str, payload: UpdateLegacyAdminRequest, admin=Depends(require_role("admin")),
                        db=Depends(get_db)):
    data = identity.update_legacy_admin(db, a_id, payload.model_dump(exclude_none=True))
    return {"message": "Admin updated successfully", "data": data}


@app.delete("/api/admins/{a_id}")
def delete_legacy_admin(a_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    identity.delete_legacy_admin(db, a_id)
    return {"message": "Admin deleted successfully"}


# Event Routes
@app.get("/api/events/generate-id")
def generate_event_id(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"id": ids.next_id(db, "event")}


@app.post("/api/events", status_code=201)
def create_event(payload: EventRequest, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return catalog.create_event(db, payload.model_dump())


@app.get("/api/events")
def list_events(db=Depends(get_db)):
    return listing(catalog.list_events(db))


@app.get("/api/events/{event_id}")
def get_event(event_id: str, db=Depends(get_db)):
    return catalog.get_event(db, event_id)


@app.put("/api/events/{event_id}")
def update_event(event_id: str, payload: UpdateEventRequest, admin=Depends(require_role("admin")), db=Depends(get_db)):
    data = catalog.update_event(db, event_id, payload.model_dump(exclude_none=True))
    return {"message": "Event updated successfully", "data": data}


@app.delete("/api/events/{event_id}")
def delete_event(event_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    catalog.delete_event(db, event_id)
    return {"message": "Event deleted successfully"}


# Package Routes
@app.get("/api/packages/generate-id")
def generate_package_id(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return {"id": ids.next_id(db, "package")}


@app.post("/api/packages", status_code=201)
def create_package(payload: PackageRequest, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return catalog.create_package(db, payload.model_dump())


@app.get("/api/packages")
def list_packages(db=Depends(get_db)):
    return listing(catalog.list_packages(db))


@app.get("/api/packages/event/{event_id}")
def list_event_packages(event_id: str, db=Depends(get_db)):
    return listing(catalog.list_packages(db, event_id))


@app.get("/api/packages/{package_id}")
def get_package(package_id: str, db=Depends(get_db)):
    return catalog.get_package(db, package_id)


@app.put("/api/packages/{package_id}")
def update_package(package_id: str, payload: UpdatePackageRequest, admin=Depends(require_role("admin")),
                   db=Depends(get_db)):
    data = catalog.update_package(db, package_id, payload.Pg_price)
    return {"message": "Package updated successfully", "data": data}


@app.delete("/api/packages/{package_id}")
def delete_package(package_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    catalog.delete_package(db, package_id)
    return {"message": "Package deleted successfully"}


# Payment Routes
@app.post("/api/payments/card", status_code=201)
def create_card_payment(payload: CardPaymentRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    fields = payload.model_dump()
    fields["customerId"] = payer_for(current_user, payload.customerId)
    return payments.create_card_payment(db, fields)


@app.post("/api/payments/portal", status_code=201)
def create_portal_payment(payload: PortalPaymentRequest, current_user=Depends(get_current_user), db=Depends(get_db)):
    fields = payload.model_dump()
    fields["customerId"] = payer_for(current_user, payload.customerId)
    return payments.create_portal_payment(db, fields)


@app.get("/api/payments")
def list_payments(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(payments.list_payments(db))


@app.get("/api/payments/card")
def list_card_payments(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(payments.list_payments(db, payment_type="Card"))


@app.get("/api/payments/portal")
def list_portal_payments(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(payments.list_payments(db, payment_type="Portal"))


@app.get("/api/payments/customer/{customer_id}")
def list_customer_payments(customer_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    ensure_owner_or_admin(current_user, customer_id)
    return listing(payments.list_payments(db, customer_id=customer_id))


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    payment = payments.get_payment(db, payment_id)
    ensure_owner_or_admin(current_user, payment.get("customerId"))
    return payment


@app.put("/api/payments/{payment_id}")
def update_payment(payment_id: str, payload: UpdatePaymentRequest, admin=Depends(require_role("admin")),
                   db=Depends(get_db)):
    return payments.update_payment(db, payment_id, payload.model_dump(exclude_none=True))


@app.patch("/api/payments/{payment_id}/refund")
def refund_payment(payment_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    return payments.refund_payment(db, payment_id)


@app.patch("/api/payments/{payment_id}/cancel")
def cancel_payment(payment_id: str, customer=Depends(require_role("customer")), db=Depends(get_db)):
    return payments.cancel_payment(db, payment_id, customer["userId"])


@app.delete("/api/payments/{payment_id}")
def delete_payment(payment_id: str, admin=Depends(require_role("admin")), db=Depends(get_db)):
    payments.delete_payment(db, payment_id)
    return {"message": "Payment record deleted successfully"}


@app.get("/api/customer-purchases")
def customer_purchases(admin=Depends(require_role("admin")), db=Depends(get_db)):
    return listing(purchases.customer_purchases(db))


# Feedback Routes
@app.post("/api/feedback", status_code=201)
def create_feedback(payload: FeedbackRequest, customer=Depends(require_role("customer")), db=Depends(get_db)):
    fb = feedback.create_feedback(db, customer["userId"], payload.message, payload.rating)
    return {"message": "Feedback submitted successfully", "feedback": fb}


@app.get("/api/feedback")
def list_feedback(customerId: Optional[str] = None, db=Depends(get_db)):
    return feedback.list_feedback(db, customerId)


@app.get("/api/feedback/{feedback_id}")
def get_feedback(feedback_id: str, db=Depends(get_db)):
    return sanitize(feedback.get_feedback(db, feedback_id))


@app.put("/api/feedback/{feedback_id}")
def update_feedback(feedback_id: str, payload: UpdateFeedbackRequest, current_user=Depends(get_current_user),
                    db=Depends(get_db)):
    fb = feedback.update_feedback(db, feedback_id, current_user, payload.message, payload.rating)
    return {"message": "Feedback updated successfully", "feedback": fb}


@app.delete("/api/feedback/{feedback_id}")
def delete_feedback(feedback_id: str, current_user=Depends(get_current_user), db=Depends(get_db)):
    feedback.delete_feedback(db, feedback_id, current_user)
    return {"message": "Feedback deleted successfully"}


# Upload Routes
@app.post("/api/uploads/bank-slip", status_code=201)
async def upload_bank_slip(bankSlip: UploadFile = File(...), current_user=Depends(get_current_user)):
    data = await bankSlip.read(storage.MAX_UPLOAD_BYTES + 1)
    stored = storage.store_image(data, bankSlip.content_type, bankSlip.filename)
    return {"message": "File uploaded successfully", **stored}


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Welcome to the Event Planning API"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    try:
        collections = db.list_collection_names() if db is not None else []
        return {"backend": "ok", "database": "ok" if db is not None else "missing", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {e}"}
