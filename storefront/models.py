"""
Client-side models

Pydantic views of the documents the API returns, plus the cart and
checkout records that live only on the client.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

FALLBACK_IMAGES = {
    "Shampoo": "https://images.unsplash.com/photo-1608248543803-ba4f8c70ae0b?w=400&h=400&fit=crop",
    "Conditioner": "https://images.unsplash.com/photo-1571875257727-256c39da42af?w=400&h=400&fit=crop",
    "Hair Oil": "https://images.unsplash.com/photo-1570554886111-e80fcca6a029?w=400&h=400&fit=crop",
    "Hair Mask": "https://images.unsplash.com/photo-1559056199-641a0ac8b55e?w=400&h=400&fit=crop",
    "Hair Serum": "https://images.unsplash.com/photo-1556228720-195a672e8a03?w=400&h=400&fit=crop",
    "Hair Spray": "https://images.unsplash.com/photo-1522337360788-8b13dee7a37e?w=400&h=400&fit=crop",
}


class Image(BaseModel):
    public_id: Optional[str] = None
    url: str


class Review(BaseModel):
    id: str
    user: str
    name: str
    rating: int
    comment: str = ""
    created_at: Optional[datetime] = None


class Product(BaseModel):
    id: str
    name: str
    price: float = 0
    description: str = ""
    category: str = "Shampoo"
    brand: str = "Nourishy"
    stock: int = 0
    images: List[Image] = Field(default_factory=list)
    ratings: float = 0
    num_of_reviews: int = 0
    reviews: List[Review] = Field(default_factory=list)
    featured: bool = False
    created_at: Optional[datetime] = None

    @property
    def image_url(self) -> str:
        if self.images:
            return self.images[0].url
        return FALLBACK_IMAGES.get(self.category, FALLBACK_IMAGES["Shampoo"])


class User(BaseModel):
    id: str
    name: str
    email: str
    role: str = "user"
    is_active: bool = True
    is_email_verified: bool = False
    avatar: Optional[Image] = None
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class CartItem(BaseModel):
    """One cart line; stored under the `product` key like the order payload."""
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="product")
    name: str
    price: float
    image: str = ""
    stock: int
    quantity: int = Field(..., ge=1)

    @property
    def subtotal(self) -> float:
        return round(self.price * self.quantity, 2)


class CartTotals(BaseModel):
    subtotal: float = 0
    shipping: float = 0
    tax: float = 0
    total: float = 0


class ShippingInfo(BaseModel):
    address: str
    city: str
    postal_code: str
    phone_no: str
    country: str = "Philippines"


class PaymentInfo(BaseModel):
    id: str
    status: str


class OrderLine(BaseModel):
    product: str
    quantity: int


class OrderRequest(BaseModel):
    order_items: List[OrderLine]
    shipping_info: ShippingInfo
    tax_price: float = 0
    shipping_price: float = 0
    payment_info: PaymentInfo


class OrderItem(BaseModel):
    product: str
    name: str
    price: float
    quantity: int
    image: str = ""


class Order(BaseModel):
    id: str
    # A user id for the owner's view, {id, name, email} in the admin list
    user: Any = None
    order_items: List[OrderItem] = Field(default_factory=list)
    shipping_info: Optional[ShippingInfo] = None
    payment_info: Optional[PaymentInfo] = None
    items_price: float = 0
    tax_price: float = 0
    shipping_price: float = 0
    total_price: float = 0
    order_status: str = "Pending"
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AdminReview(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    review_id: str
    user: Optional[str] = None
    name: Optional[str] = None
    rating: int
    comment: str = ""
    created_at: Optional[datetime] = None


class SalesPoint(BaseModel):
    month: str
    revenue: float
    orders: int


class ProductStat(BaseModel):
    name: str
    sales: int
    revenue: float


class UserStat(BaseModel):
    name: str
    value: int
    color: str


class Analytics(BaseModel):
    totals: Dict[str, float] = Field(default_factory=dict)
    sales_data: List[SalesPoint] = Field(default_factory=list)
    product_stats: List[ProductStat] = Field(default_factory=list)
    user_stats: List[UserStat] = Field(default_factory=list)
