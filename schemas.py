"""
Database Schemas

MongoDB collection schemas for the Nourishy storefront, as Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.
"""

from datetime import datetime
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, EmailStr, Field

Role = Literal["user", "admin"]
OrderStatus = Literal["Pending", "Confirmed", "Cancelled", "Delivered"]
Category = Literal[
    "Shampoo",
    "Conditioner",
    "Hair Oil",
    "Hair Mask",
    "Hair Serum",
    "Hair Spray",
    "Hair Color",
    "Hair Styling",
    "Hair Accessories",
]

ROLES = get_args(Role)
ORDER_STATUSES = get_args(OrderStatus)
CATEGORIES = get_args(Category)

DEFAULT_AVATAR = {
    "public_id": "default_avatar",
    "url": "https://res.cloudinary.com/dkqnaqbvg/image/upload/v1/default_avatar.png",
}


class Image(BaseModel):
    public_id: Optional[str] = None
    url: str


class User(BaseModel):
    name: str = Field(..., max_length=30, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("user", description="Role: user | admin")
    is_active: bool = True
    is_email_verified: bool = False
    avatar: Image = Field(default_factory=lambda: Image(**DEFAULT_AVATAR))
    created_at: Optional[datetime] = None


class Review(BaseModel):
    """Embedded in Product.reviews"""
    id: str
    user: str
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., max_length=100)
    price: float = Field(..., ge=0)
    description: str
    category: Category = "Shampoo"
    brand: str = "Nourishy"
    seller: str = "Nourishy"
    images: List[Image] = Field(default_factory=list)
    ratings: float = Field(default=0, ge=0, le=5)
    num_of_reviews: int = 0
    reviews: List[Review] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    featured: bool = False
    user: Optional[str] = Field(None, description="Admin who created the product")
    created_at: Optional[datetime] = None


class ShippingInfo(BaseModel):
    address: str
    city: str
    postal_code: str
    phone_no: str
    country: str = "Philippines"


class PaymentInfo(BaseModel):
    id: str
    status: str


class OrderItem(BaseModel):
    """Snapshot of the product at purchase time"""
    product: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: str = ""


class Order(BaseModel):
    user: str
    order_items: List[OrderItem]
    shipping_info: ShippingInfo
    payment_info: Optional[PaymentInfo] = None
    items_price: float = 0
    tax_price: float = 0
    shipping_price: float = 0
    total_price: float = 0
    order_status: OrderStatus = "Pending"
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
