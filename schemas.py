"""
Database Schemas for the Decor Store backend

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

OrderStatus = Literal["pending", "processing", "shipped", "completed", "cancelled"]
PaymentMethod = Literal["COD", "UPI"]
PaymentStatus = Literal["pending", "completed", "failed"]

ORDER_STATUSES = ("pending", "processing", "shipped", "completed", "cancelled")


class User(BaseModel):
    username: str = Field(..., description="Display name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    is_admin: bool = False


class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    category: str
    image: Optional[str] = None
    stock: int = 10
    # Set only while a deal discount is applied
    old_price: Optional[float] = None


class OrderProduct(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    address: str
    city: str
    state: str
    pincode: str


class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    payment_date: Optional[datetime] = None
    payment_gateway: Optional[str] = None
    failure_reason: Optional[str] = None


class Order(BaseModel):
    products: List[OrderProduct] = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    email: EmailStr
    payment_method: PaymentMethod
    status: OrderStatus = "pending"
    shipping_address: ShippingAddress
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)


class Deal(BaseModel):
    """
    Deal collection schema
    Collection name: "deal" (a single document, replaced on write)
    """
    title: str
    description: str
    discount: int = Field(..., ge=0, le=100, description="Percentage off")
    image_url: Optional[str] = None
    end_date: datetime
    categories: List[str] = []
    is_active: bool = True
