"""
Database Schemas for DocuShop

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CRYPTO_ADDRESSES_KEY = "crypto-addresses"


class User(BaseModel):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    username: str
    email: str
    phone: Optional[str] = None
    password: str = Field(..., description="bcrypt hash, never returned")
    role: Literal["user", "admin"] = "user"
    status: Literal["active", "inactive"] = "active"


class CryptoAddresses(BaseModel):
    """Singleton, stored under the fixed _id CRYPTO_ADDRESSES_KEY."""
    model_config = ConfigDict(populate_by_name=True)

    bitcoin: Optional[str] = ""
    ethereum: Optional[str] = ""
    usdt: Optional[str] = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="updatedAt")


class Product(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None
    category: Optional[str] = None
    variants: List[Any] = []
    available: bool = True


class OrderItem(BaseModel):
    # selection details (size, colour, ...) are kept as sent
    model_config = ConfigDict(extra="allow")

    product: Optional[str] = None
    quantity: int = 1


class Order(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: Optional[str] = None
    products: List[OrderItem] = []
    total: Optional[float] = None
    billing_info: Optional[Any] = Field(None, alias="billingInfo")
    payment_addresses: Optional[Any] = Field(None, alias="paymentAddresses")
    status: Literal["placed", "cancelled"] = "placed"
