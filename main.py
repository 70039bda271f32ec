import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field
from bson import ObjectId
from jose import JWTError, jwt
from passlib.context import CryptContext

import analytics
from database import create_document, db, get_documents
from schemas import (
    ORDER_STATUSES,
    ROLES,
    Category,
    Image,
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
    PaymentInfo,
    Product as ProductSchema,
    Review as ReviewSchema,
    ShippingInfo,
    User as UserSchema,
)

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

DEACTIVATED_MESSAGE = "Your account has been deactivated. Please contact support."

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = structlog.get_logger(__name__)

app = FastAPI(title="Nourishy Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(doc)
    # Never send password hash
    user.pop("password_hash", None)
    return user


def object_id(value: str, label: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {label} id")
    return ObjectId(value)


def get_product_or_404(product_id: str) -> dict:
    product = db["product"].find_one({"_id": object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def get_order_or_404(order_id: str) -> dict:
    order = db["order"].find_one({"_id": object_id(order_id, "order")})
    if not order:
        raise HTTPException(status_code=404, detail="No Order found with this ID")
    return order


def recompute_ratings(product_id: ObjectId) -> None:
    product = db["product"].find_one({"_id": product_id}, {"reviews": 1})
    reviews = product.get("reviews", []) if product else []
    ratings = round(sum(r["rating"] for r in reviews) / len(reviews), 2) if reviews else 0
    db["product"].update_one(
        {"_id": product_id},
        {"$set": {"ratings": ratings, "num_of_reviews": len(reviews)}},
    )


# Dependencies to get current user

def get_current_user(authorization: Optional[str] = Header(default=None)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Login first to access this resource")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.get("is_active") is False:
        logger.info("auth.rejected_inactive", user_id=user_id)
        raise HTTPException(status_code=403, detail=DEACTIVATED_MESSAGE)
    return public_user(user)


def require_admin(current_user: dict = Depends(get_current_user)):
    if current_user.get("role") != "admin":
        raise HTTPException(
            status_code=403,
            detail=f"Role ({current_user.get('role')}) is not allowed to access this resource",
        )
    return current_user


# Routes
@app.get("/")
def read_root():
    return {"message": "Nourishy Storefront API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    success: bool = True
    token: str
    user: Dict[str, Any]


@app.post("/api/v1/register", response_model=TokenResponse)
def register(payload: RegisterInput):
    existing = db["user"].find_one({"email": payload.email.lower()})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user_model = UserSchema(
        name=payload.name,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
        created_at=datetime.now(timezone.utc),
    )
    user_id = create_document("user", user_model)
    logger.info("auth.registered", user_id=user_id)
    token = create_access_token({"sub": user_id})
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    return TokenResponse(token=token, user=public_user(user))


@app.post("/api/v1/login", response_model=TokenResponse)
def login(payload: LoginInput):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.get("is_active") is False:
        raise HTTPException(status_code=403, detail=DEACTIVATED_MESSAGE)
    token = create_access_token({"sub": str(user["_id"])})
    return TokenResponse(token=token, user=public_user(user))


@app.post("/api/v1/logout")
def logout():
    # Tokens are stateless; the client drops its copy
    return {"success": True, "message": "Logged out"}


@app.get("/api/v1/me")
def me(current_user: dict = Depends(get_current_user)):
    return {"success": True, "user": current_user}


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=30)
    email: Optional[EmailStr] = None
    avatar: Optional[str] = Field(None, description="Avatar URL")


@app.put("/api/v1/me/update")
def update_profile(payload: ProfileUpdate, current_user: dict = Depends(get_current_user)):
    update: Dict[str, Any] = {}
    if payload.name is not None:
        update["name"] = payload.name
    if payload.email is not None:
        email = payload.email.lower()
        taken = db["user"].find_one({"email": email, "_id": {"$ne": ObjectId(current_user["id"])}})
        if taken:
            raise HTTPException(status_code=400, detail="Email already registered")
        update["email"] = email
    if payload.avatar:
        public_id = (current_user.get("avatar") or {}).get("public_id") or "external_url"
        update["avatar"] = {"public_id": public_id, "url": payload.avatar}
    if update:
        db["user"].update_one({"_id": ObjectId(current_user["id"])}, {"$set": update})
    user = db["user"].find_one({"_id": ObjectId(current_user["id"])})
    return {"success": True, "message": "Profile updated successfully", "user": public_user(user)}


# Products
@app.get("/api/v1/products")
def list_products():
    products = [serialize_doc(p) for p in get_documents("product")]
    return {"success": True, "products": products, "products_count": len(products)}


@app.get("/api/v1/products/featured")
def featured_products():
    products = [serialize_doc(p) for p in get_documents("product", {"featured": True})]
    return {"success": True, "products": products, "products_count": len(products)}


@app.get("/api/v1/product/{product_id}")
def get_product(product_id: str):
    return {"success": True, "product": serialize_doc(get_product_or_404(product_id))}


# Reviews
class ReviewInput(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


@app.put("/api/v1/review")
def upsert_review(payload: ReviewInput, current_user: dict = Depends(get_current_user)):
    product = get_product_or_404(payload.product_id)
    reviews = product.get("reviews", [])
    now = datetime.now(timezone.utc)
    existing = next((r for r in reviews if r.get("user") == current_user["id"]), None)
    if existing:
        existing.update(rating=payload.rating, comment=payload.comment)
    else:
        review = ReviewSchema(
            id=str(ObjectId()),
            user=current_user["id"],
            name=current_user["name"],
            rating=payload.rating,
            comment=payload.comment,
            created_at=now,
        )
        reviews.append(review.model_dump())
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"reviews": reviews}})
    recompute_ratings(product["_id"])
    return {"success": True}


@app.get("/api/v1/reviews")
def product_reviews(product_id: str = Query(..., alias="productId")):
    product = get_product_or_404(product_id)
    return {"success": True, "reviews": product.get("reviews", [])}


# Orders
class OrderItemInput(BaseModel):
    product: str
    quantity: int


class NewOrderInput(BaseModel):
    order_items: List[OrderItemInput] = Field(default_factory=list)
    shipping_info: ShippingInfo
    tax_price: float = 0
    shipping_price: float = 0
    payment_info: Optional[PaymentInfo] = None


@app.post("/api/v1/order/new")
def new_order(payload: NewOrderInput, current_user: dict = Depends(get_current_user)):
    if not payload.order_items:
        raise HTTPException(status_code=400, detail="Order must include at least one item")

    items: List[OrderItemSchema] = []
    items_price = 0.0
    for item in payload.order_items:
        if not item.product or item.quantity <= 0:
            raise HTTPException(status_code=400, detail="Each cart item must include valid product and quantity (>0)")
        product = db["product"].find_one({"_id": ObjectId(item.product)}) if ObjectId.is_valid(item.product) else None
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {item.product}")
        if product.get("stock", 0) < item.quantity:
            raise HTTPException(status_code=400, detail=f"Insufficient stock for product {product['name']}")
        price = float(product.get("price") or 0)
        images = product.get("images") or []
        items.append(OrderItemSchema(
            product=str(product["_id"]),
            name=product["name"],
            price=price,
            quantity=item.quantity,
            image=images[0]["url"] if images else "",
        ))
        items_price += price * item.quantity

    items_price = round(items_price, 2)
    now = datetime.now(timezone.utc)
    order = OrderSchema(
        user=current_user["id"],
        order_items=items,
        shipping_info=payload.shipping_info,
        payment_info=payload.payment_info,
        items_price=items_price,
        tax_price=payload.tax_price,
        shipping_price=payload.shipping_price,
        total_price=round(items_price + payload.tax_price + payload.shipping_price, 2),
        paid_at=now,
        created_at=now,
    )
    order_id = create_document("order", order)
    logger.info("order.created", order_id=order_id, user_id=current_user["id"], total=order.total_price)
    created = db["order"].find_one({"_id": ObjectId(order_id)})
    return {"success": True, "order": serialize_doc(created)}


@app.get("/api/v1/orders/me")
def my_orders(current_user: dict = Depends(get_current_user)):
    orders = [serialize_doc(o) for o in db["order"].find({"user": current_user["id"]})]
    return {"success": True, "orders": orders}


@app.get("/api/v1/order/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user)):
    order = get_order_or_404(order_id)
    if order.get("user") != current_user["id"] and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not authorized to view this order")
    return {"success": True, "order": serialize_doc(order)}


@app.delete("/api/v1/order/{order_id}")
def delete_own_order(order_id: str, current_user: dict = Depends(get_current_user)):
    order = get_order_or_404(order_id)
    if order.get("user") != current_user["id"]:
        raise HTTPException(status_code=403, detail="You can only delete your own order")
    db["order"].delete_one({"_id": order["_id"]})
    return {"success": True}


# Admin: products
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., ge=0)
    description: str
    category: Category = "Shampoo"
    brand: str = "Nourishy"
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[Category] = None
    brand: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    featured: Optional[bool] = None


def _image_docs(urls: List[str]) -> List[Image]:
    return [Image(public_id=f"product_{i}", url=url) for i, url in enumerate(urls)]


@app.post("/api/v1/admin/product/new", status_code=201)
def create_product(data: ProductIn, current_user: dict = Depends(require_admin)):
    product = ProductSchema(
        **data.model_dump(exclude={"images"}),
        images=_image_docs(data.images),
        user=current_user["id"],
        created_at=datetime.now(timezone.utc),
    )
    product_id = create_document("product", product)
    created = db["product"].find_one({"_id": ObjectId(product_id)})
    return {"success": True, "product": serialize_doc(created)}


@app.put("/api/v1/admin/product/{product_id}")
def update_product(product_id: str, data: ProductUpdate, current_user: dict = Depends(require_admin)):
    obj_id = object_id(product_id, "product")
    update_dict = {k: v for k, v in data.model_dump(exclude_unset=True).items()}
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "images" in update_dict:
        update_dict["images"] = [image.model_dump() for image in _image_docs(update_dict["images"] or [])]
    update_dict["updated_at"] = datetime.now(timezone.utc)
    res = db["product"].update_one({"_id": obj_id}, {"$set": update_dict})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    product = db["product"].find_one({"_id": obj_id})
    return {"success": True, "product": serialize_doc(product)}


@app.delete("/api/v1/admin/product/{product_id}")
def delete_product(product_id: str, current_user: dict = Depends(require_admin)):
    res = db["product"].delete_one({"_id": object_id(product_id, "product")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True}


class BulkDeleteInput(BaseModel):
    ids: List[str]


@app.post("/api/v1/admin/products/bulk-delete")
def bulk_delete_products(payload: BulkDeleteInput, current_user: dict = Depends(require_admin)):
    if not payload.ids:
        raise HTTPException(status_code=400, detail="No products selected")
    obj_ids = [object_id(pid, "product") for pid in payload.ids]
    res = db["product"].delete_many({"_id": {"$in": obj_ids}})
    return {"success": True, "deleted_count": res.deleted_count}


# Admin: users
class RoleInput(BaseModel):
    role: str


class StatusInput(BaseModel):
    is_active: bool


@app.get("/api/v1/admin/users")
def all_users(current_user: dict = Depends(require_admin)):
    return {"success": True, "users": [public_user(u) for u in db["user"].find()]}


@app.put("/api/v1/admin/user/{user_id}")
def update_user_role(user_id: str, payload: RoleInput, current_user: dict = Depends(require_admin)):
    if payload.role not in ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    obj_id = object_id(user_id, "user")
    res = db["user"].update_one({"_id": obj_id}, {"$set": {"role": payload.role}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "message": "Role updated", "user": public_user(db["user"].find_one({"_id": obj_id}))}


@app.put("/api/v1/admin/user/{user_id}/status")
def update_user_status(user_id: str, payload: StatusInput, current_user: dict = Depends(require_admin)):
    obj_id = object_id(user_id, "user")
    res = db["user"].update_one({"_id": obj_id}, {"$set": {"is_active": payload.is_active}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "message": "Status updated", "user": public_user(db["user"].find_one({"_id": obj_id}))}


@app.delete("/api/v1/admin/user/{user_id}")
def delete_user(user_id: str, current_user: dict = Depends(require_admin)):
    res = db["user"].delete_one({"_id": object_id(user_id, "user")})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "message": "User deleted"}


# Admin: orders
class OrderStatusInput(BaseModel):
    status: str


@app.get("/api/v1/admin/orders")
def all_orders(current_user: dict = Depends(require_admin)):
    users = {str(u["_id"]): u for u in db["user"].find({}, {"name": 1, "email": 1})}
    orders = []
    for o in db["order"].find():
        order = serialize_doc(o)
        owner = users.get(order.get("user"))
        order["user"] = {"id": order.get("user"), "name": owner.get("name"), "email": owner.get("email")} if owner else None
        orders.append(order)
    total_amount = round(sum(float(o.get("total_price") or 0) for o in orders), 2)
    return {"success": True, "total_amount": total_amount, "orders": orders}


@app.put("/api/v1/admin/order/{order_id}")
def update_order_status(order_id: str, payload: OrderStatusInput, current_user: dict = Depends(require_admin)):
    next_status = payload.status.strip()
    if next_status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid order status")
    order = get_order_or_404(order_id)
    prev_status = order.get("order_status")
    if prev_status == "Delivered":
        raise HTTPException(status_code=400, detail="You have already delivered this order")

    # Stock is deducted once, on the first move to Confirmed
    if next_status == "Confirmed" and prev_status != "Confirmed":
        for item in order.get("order_items", []):
            if ObjectId.is_valid(item.get("product", "")):
                db["product"].update_one({"_id": ObjectId(item["product"])}, {"$inc": {"stock": -int(item["quantity"])}})

    update: Dict[str, Any] = {"order_status": next_status}
    if next_status == "Delivered":
        update["delivered_at"] = datetime.now(timezone.utc)
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    logger.info("order.status_changed", order_id=order_id, previous=prev_status, status=next_status)
    return {"success": True, "order": serialize_doc(db["order"].find_one({"_id": order["_id"]}))}


@app.delete("/api/v1/admin/order/{order_id}")
def delete_order(order_id: str, current_user: dict = Depends(require_admin)):
    order = get_order_or_404(order_id)
    db["order"].delete_one({"_id": order["_id"]})
    return {"success": True}


# Admin: reviews
@app.get("/api/v1/admin/reviews")
def all_reviews(current_user: dict = Depends(require_admin)):
    reviews = []
    for p in db["product"].find({}, {"name": 1, "reviews": 1}):
        for r in p.get("reviews", []):
            reviews.append({
                "product_id": str(p["_id"]),
                "product_name": p.get("name"),
                "review_id": r.get("id"),
                "user": r.get("user"),
                "name": r.get("name"),
                "rating": r.get("rating"),
                "comment": r.get("comment"),
                "created_at": r.get("created_at"),
            })
    return {"success": True, "reviews": reviews}


@app.delete("/api/v1/admin/review/{product_id}/{review_id}")
def delete_review(product_id: str, review_id: str, current_user: dict = Depends(require_admin)):
    product = get_product_or_404(product_id)
    reviews = product.get("reviews", [])
    remaining = [r for r in reviews if r.get("id") != review_id]
    if len(remaining) == len(reviews):
        raise HTTPException(status_code=404, detail="Review not found")
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"reviews": remaining}})
    recompute_ratings(product["_id"])
    return {"success": True}


# Admin: analytics
@app.get("/api/v1/admin/analytics")
def admin_analytics(granularity: str = "month", periods: Optional[int] = Query(None, ge=1), current_user: dict = Depends(require_admin)):
    granularity = granularity.lower()
    if granularity not in analytics.GRANULARITIES:
        granularity = "month"
    orders = list(db["order"].find({}, {"total_price": 1, "created_at": 1, "order_items": 1, "user": 1}))
    product_names = {str(p["_id"]): p.get("name") for p in db["product"].find({}, {"name": 1})}
    return {
        "success": True,
        "totals": analytics.totals(orders, len(product_names), db["user"].count_documents({})),
        "sales_data": analytics.sales_series(orders, granularity, periods),
        "product_stats": analytics.product_stats(orders, product_names),
        "user_stats": analytics.user_stats(orders, db["user"].count_documents({"role": "admin"})),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
