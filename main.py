import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

import bcrypt
from bson.objectid import ObjectId
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import create_document, ensure_indexes, get_collection, get_documents
from schemas import (
    CRYPTO_ADDRESSES_KEY,
    CryptoAddresses as CryptoAddressesSchema,
    Order as OrderSchema,
    Product as ProductSchema,
    User as UserSchema,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError:
        logger.exception("MongoDB connection error")
        raise
    yield


app = FastAPI(title="DocuShop Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------- Errors -----------------------


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.middleware("http")
async def server_error_middleware(request: Request, call_next):
    # store failures and any other unhandled error become a JSON 500
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Server error"})


# ----------------------- Utils -----------------------
BCRYPT_ROUNDS = 10
BCRYPT_MAX_BYTES = 72

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_EMAIL = "admin@example.com"
DEFAULT_ADMIN_PASSWORD = "admin123"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash.

    A malformed hash or an over-long password counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def check_password_length(password: str):
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise HTTPException(status_code=400, detail="Password too long")


def serialize_doc(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        doc = {k: serialize_doc(v) for k, v in value.items()}
        if "_id" in doc:
            doc["id"] = doc.pop("_id")
        return doc
    return value


def to_object_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def populate_orders(orders: List[dict]) -> List[dict]:
    """Replace user and product references with the referenced records (None when missing)."""
    user_ids = {o["user"] for o in orders if isinstance(o.get("user"), ObjectId)}
    product_ids = {
        item["product"]
        for o in orders
        for item in o.get("products") or []
        if isinstance(item.get("product"), ObjectId)
    }
    users = {}
    if user_ids:
        users = {
            u["_id"]: u
            for u in get_collection("user").find({"_id": {"$in": list(user_ids)}}, {"password": 0})
        }
    products = {}
    if product_ids:
        products = {p["_id"]: p for p in get_collection("product").find({"_id": {"$in": list(product_ids)}})}

    for order in orders:
        if "user" in order:
            order["user"] = users.get(order["user"])
        for item in order.get("products") or []:
            if "product" in item:
                item["product"] = products.get(item["product"])
    return orders


# ----------------------- Models -----------------------
class RequestBody(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class RegisterBody(RequestBody):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


class LoginBody(RequestBody):
    email: Optional[str] = None
    password: Optional[str] = None


class AdminUpdateBody(RequestBody):
    email: Optional[str] = None
    password: Optional[str] = None


class CreateAdminBody(RequestBody):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class CryptoAddressesBody(BaseModel):
    bitcoin: Optional[str] = None
    ethereum: Optional[str] = None
    usdt: Optional[str] = None


class ProductCreateBody(ProductSchema):
    pass


class OrderCreateBody(OrderSchema):
    # new orders always start as "placed"
    status: Any = Field(None, exclude=True)


# ----------------------- Health -----------------------
@app.get("/", response_class=PlainTextResponse)
def root():
    return "DocuShop backend is running"


# ----------------------- Users -----------------------
@app.put("/users/admin")
def update_admin(body: AdminUpdateBody):
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password required")
    check_password_length(body.password)
    users = get_collection("user")
    admin = users.find_one({"role": "admin"})
    if not admin:
        raise HTTPException(status_code=404, detail="Admin user not found")
    update = {
        "email": body.email,
        "password": hash_password(body.password),
        "updated_at": datetime.now(timezone.utc),
    }
    try:
        users.update_one({"_id": admin["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already in use")
    logger.info("Admin login details updated")
    return {"message": "Admin login details updated"}


@app.post("/users/register")
def register(body: RegisterBody):
    if not all(body.model_dump().values()):
        raise HTTPException(status_code=400, detail="All fields are required")
    check_password_length(body.password)
    existing = get_collection("user").find_one({"$or": [{"email": body.email}, {"username": body.username}]})
    if existing:
        logger.warning("Registration rejected, email or username taken: %s", body.username)
        raise HTTPException(status_code=400, detail="Email or username already exists")
    user = UserSchema(
        firstname=body.firstname,
        lastname=body.lastname,
        username=body.username,
        email=body.email,
        phone=body.phone,
        password=hash_password(body.password),
        role="user",
        status="active",
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email or username already exists")
    logger.info("User registered: %s", user_id)
    return {"message": "Registration successful", "user": {"id": user_id, "email": user.email, "username": user.username}}


@app.post("/users/login")
def login(body: LoginBody):
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password required")
    user = get_collection("user").find_one({"email": body.email})
    if not user:
        logger.warning("Login failed, unknown email")
        raise HTTPException(status_code=400, detail="User not found")
    if not verify_password(body.password, user.get("password") or ""):
        logger.warning("Login failed, incorrect password for %s", user["_id"])
        raise HTTPException(status_code=400, detail="Incorrect password")
    if user.get("status") != "active":
        logger.warning("Login refused, account %s not active", user["_id"])
        raise HTTPException(status_code=403, detail="Account not active")
    return {
        "message": "Login successful",
        "user": {
            "id": str(user["_id"]),
            "email": user.get("email"),
            "username": user.get("username"),
            "role": user.get("role"),
            "status": user.get("status"),
        },
    }


# ----------------------- Crypto Addresses -----------------------
@app.get("/crypto-addresses")
def get_crypto_addresses():
    addresses = get_collection("cryptoaddresses").find_one_and_update(
        {"_id": CRYPTO_ADDRESSES_KEY},
        {"$setOnInsert": CryptoAddressesSchema().model_dump(by_alias=True)},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(addresses)


@app.put("/crypto-addresses")
def update_crypto_addresses(body: CryptoAddressesBody):
    values = CryptoAddressesSchema(bitcoin=body.bitcoin, ethereum=body.ethereum, usdt=body.usdt)
    addresses = get_collection("cryptoaddresses").find_one_and_update(
        {"_id": CRYPTO_ADDRESSES_KEY},
        {"$set": values.model_dump(by_alias=True)},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Crypto addresses updated")
    return {"message": "Crypto addresses updated", "addresses": serialize_doc(addresses)}


# ----------------------- Admin Bootstrap -----------------------
@app.post("/create-admin")
def create_admin(body: Optional[CreateAdminBody] = None):
    body = body or CreateAdminBody()
    username = body.username or DEFAULT_ADMIN_USERNAME
    email = body.email or DEFAULT_ADMIN_EMAIL
    password = body.password or DEFAULT_ADMIN_PASSWORD
    check_password_length(password)
    if get_collection("user").find_one({"role": "admin"}):
        logger.warning("Admin creation rejected, admin already exists")
        raise HTTPException(status_code=400, detail="Admin user already exists")
    admin = UserSchema(
        username=username,
        email=email,
        password=hash_password(password),
        role="admin",
        status="active",
    )
    try:
        admin_id = create_document("user", admin)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Admin user already exists")
    logger.info("Admin user created: %s", admin_id)
    return {"message": "Admin user created", "admin": {"id": admin_id, "email": admin.email, "username": admin.username}}


# ----------------------- Products -----------------------
@app.get("/products")
def list_products():
    return [serialize_doc(p) for p in get_documents("product")]


@app.post("/products")
def create_product(body: ProductCreateBody):
    pid = create_document("product", body)
    product = get_collection("product").find_one({"_id": ObjectId(pid)})
    logger.info("Product created: %s", pid)
    return {"message": "Product created", "product": serialize_doc(product)}


# ----------------------- Orders -----------------------
@app.get("/orders")
def list_orders():
    orders = populate_orders(get_documents("order"))
    return [serialize_doc(o) for o in orders]


@app.post("/orders")
def create_order(body: OrderCreateBody):
    data = body.model_dump(by_alias=True)
    data["status"] = "placed"
    data["user"] = to_object_id(data.get("user"))
    for item in data["products"]:
        item["product"] = to_object_id(item.get("product"))
    oid = create_document("order", data)
    order = get_collection("order").find_one({"_id": ObjectId(oid)})
    logger.info("Order placed: %s", oid)
    return {"message": "Order placed", "order": serialize_doc(order)}


@app.patch("/orders/{order_id}/cancel")
def cancel_order(order_id: str):
    if not ObjectId.is_valid(order_id):
        raise HTTPException(status_code=404, detail="Order not found")
    order = get_collection("order").find_one_and_update(
        {"_id": ObjectId(order_id)},
        {"$set": {"status": "cancelled", "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order cancelled: %s", order_id)
    return {"message": "Order cancelled", "order": serialize_doc(order)}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
