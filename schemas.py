"""
Database Schemas

MongoDB collection schemas for the guitar store, defined as Pydantic models.
Model name is converted to lowercase for the collection name:
- User -> "user" collection (cart lines are embedded)
- Product -> "product" collection
- Order -> "order" collection
"""

from pydantic import BaseModel, Field, EmailStr, conlist
from typing import Optional, List, Literal

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]


class CartLine(BaseModel):
    product_id: str = Field(..., description="Referenced Product _id as string")
    quantity: int = Field(..., ge=1, description="Units reserved from stock")


class User(BaseModel):
    first_name: str = Field(..., min_length=1, description="Given name")
    middle_name: Optional[str] = Field(None, description="Middle name")
    last_name: str = Field(..., min_length=1, description="Family name")
    email: EmailStr = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="pbkdf2_sha256 hash of the password")
    is_admin: bool = Field(False, description="Whether the user can manage the store")
    phone: Optional[str] = Field(None, description="Phone number")
    age: Optional[int] = Field(None, ge=0, le=150, description="Age in years")
    address: Optional[str] = Field(None, description="Postal address")
    picture: Optional[str] = Field(None, description="Profile picture as a data URI")
    cart: List[CartLine] = Field(default_factory=list, description="Embedded cart lines")
    cart_version: int = Field(0, ge=0, description="Bumped on every cart write")


class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Product name")
    brand: str = Field(..., description="Brand name")
    type: str = Field(..., description="Category, e.g. Electric, Acoustic, Bass, Drums, Effects")
    price: float = Field(..., ge=0, description="Price")
    stock: int = Field(0, ge=0, description="Units available")
    image: Optional[str] = Field(None, description="Image URL")
    description: Optional[str] = Field(None, description="Description")


class DeliveryCoords(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class OrderLine(BaseModel):
    product_id: str = Field(..., description="Referenced Product _id as string")
    name: str = Field(..., description="Snapshot of product name")
    price: float = Field(..., ge=0, description="Unit price at time of order")
    quantity: int = Field(..., ge=1, description="Quantity ordered")
    image: Optional[str] = Field(None, description="Snapshot of product image")


class Order(BaseModel):
    user_id: str = Field(..., description="Owning User _id as string")
    items: conlist(OrderLine, min_length=1) = Field(..., description="Ordered items")
    total_amount: float = Field(..., ge=0, description="Computed once at creation")
    status: OrderStatus = Field("Pending", description="Order status")
    delivery: Optional[DeliveryCoords] = Field(None, description="Optional delivery coordinates")
