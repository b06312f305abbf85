"""
Database Schemas for Petani Maju

Each Pydantic model corresponds to a MongoDB collection:
- User -> "users"
- UserRole -> "user_roles"
- Product -> "products"
- CartItem -> "cart_items"
- Order -> "orders"
- OrderItem -> "order_items"
"""
import math
from decimal import Decimal, InvalidOperation
from typing import Literal, Optional, get_args

from pydantic import BaseModel, EmailStr, Field, field_validator

from settings import DEFAULT_UNIT, PAYMENT_METHOD

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
ORDER_STATUSES = get_args(OrderStatus)

# largest integer BSON can store
MAX_STOCK = 2 ** 63 - 1


class User(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    password_hash: str = Field(..., description="BCrypt hash of the password")


class UserRole(BaseModel):
    user_id: str
    role: str = Field(..., description="Only 'admin' is checked")


class Product(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    category: Optional[str] = None
    stock: int = Field(..., ge=0)
    unit: str = DEFAULT_UNIT


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)


class Order(BaseModel):
    user_id: str
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    payment_method: str = PAYMENT_METHOD
    bank_name: str
    shipping_address: str
    phone: str


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at time of purchase")


class ProductForm(BaseModel):
    """
    Admin product draft. Price and stock travel as text, the way the form
    holds them, and are parsed when the draft is written.
    """
    name: str = Field(..., min_length=1)
    description: str = ""
    price: str
    image_url: Optional[str] = None
    category: str = ""
    stock: str
    unit: str = DEFAULT_UNIT

    @field_validator("price", mode="before")
    @classmethod
    def price_must_be_decimal(cls, v):
        text = str(v).strip()
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValueError("price must be a number")
        if not value.is_finite() or value < 0:
            raise ValueError("price must be a non-negative number")
        if not math.isfinite(float(value)):
            raise ValueError("price is too large")
        return text

    @field_validator("stock", mode="before")
    @classmethod
    def stock_must_be_integer(cls, v):
        text = str(v).strip()
        try:
            value = int(text)
        except ValueError:
            raise ValueError("stock must be a whole number")
        if value < 0:
            raise ValueError("stock must not be negative")
        if value > MAX_STOCK:
            raise ValueError("stock is too large")
        return text

    @field_validator("unit", mode="before")
    @classmethod
    def unit_defaults(cls, v):
        if v is None or not str(v).strip():
            return DEFAULT_UNIT
        return str(v).strip()

    def to_product(self) -> Product:
        return Product(
            name=self.name,
            description=self.description,
            price=float(Decimal(self.price)),
            image_url=self.image_url,
            category=self.category,
            stock=int(self.stock),
            unit=self.unit,
        )

    @classmethod
    def from_product(cls, doc: dict) -> "ProductForm":
        price = float(doc.get("price", 0))
        return cls(
            name=doc.get("name", ""),
            description=doc.get("description") or "",
            price=str(int(price)) if price.is_integer() else str(price),
            image_url=doc.get("image_url"),
            category=doc.get("category") or "",
            stock=str(doc.get("stock", 0)),
            unit=doc.get("unit") or DEFAULT_UNIT,
        )
