import base64
import logging
import re
from typing import List, Optional

from fastapi import FastAPI, Depends, File, Form, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

import database
import settings
from database import (
    collection, create_document, get_documents, get_document_by_id,
    update_document, delete_document, ensure_indexes, object_id, serialize_doc,
)
from errors import Conflict, Forbidden, InsufficientStock, InvalidRequest, NotFound
from inventory import (
    place_order, read_cart, release_cart, remove_cart_line,
    set_cart_quantity, set_order_status,
)
from schemas import User, Product, DeliveryCoords
from security import authenticate, get_current_admin, get_current_user, hash_password, token_for

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("guitarstore")

app = FastAPI(title="Guitar Store API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

PRIVATE_USER_FIELDS = ("password_hash", "cart_version")


# ------------------------- Helpers ----------------------------
def public_user(user: dict) -> dict:
    return serialize_doc(user, hidden=PRIVATE_USER_FIELDS)


def auth_response(user: dict) -> dict:
    return {"token": token_for(user), "token_type": "bearer", "user": public_user(user)}


# ------------------------- Error Handlers ---------------------
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(InsufficientStock)
async def insufficient_stock_handler(request: Request, exc: InsufficientStock):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "available": exc.available})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ------------------------- Startup ----------------------------
@app.on_event("startup")
def prepare_database():
    if database.db is None:
        logger.warning("Database not configured; set DATABASE_URL and DATABASE_NAME")
        return
    ensure_indexes()


# ------------------------- Basic Routes -----------------------
@app.get("/")
def root():
    return {
        "message": "Guitar Store API",
        "available_endpoints": ["/api/users", "/api/products", "/api/cart", "/api/orders"],
    }


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if db is None:
        return response
    response["database"] = "✅ Available"
    response["database_name"] = db.name
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# ------------------------- Users ------------------------------
class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class RoleUpdate(BaseModel):
    is_admin: bool


@app.post("/api/users")
def register(payload: RegisterRequest):
    email = payload.email.strip().lower()
    users = collection("user")
    if users.find_one({"email": email}):
        raise Conflict("Email already registered")
    is_admin = settings.FIRST_USER_IS_ADMIN and users.count_documents({}) == 0
    user = User(
        first_name=payload.first_name.strip(),
        middle_name=(payload.middle_name or "").strip() or None,
        last_name=payload.last_name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        is_admin=is_admin,
    )
    try:
        new_id = create_document("user", user)
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    logger.info("Registered user %s%s", new_id, " as admin" if is_admin else "")
    return auth_response(get_document_by_id("user", new_id))


@app.post("/api/users/login")
def login(payload: LoginRequest):
    user = authenticate(payload.email, payload.password)
    return auth_response(user)


@app.get("/api/users")
def list_users(admin: dict = Depends(get_current_admin)):
    users = get_documents("user", sort=[("created_at", 1)])
    return [public_user(u) for u in users]


@app.get("/api/users/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return public_user(user)


def _picture_data_uri(picture: UploadFile) -> str:
    content_type = picture.content_type or ""
    if not content_type.startswith("image/"):
        raise InvalidRequest("Profile picture must be an image")
    data = picture.file.read(settings.MAX_PICTURE_BYTES + 1)
    if not data:
        raise InvalidRequest("Profile picture is empty")
    if len(data) > settings.MAX_PICTURE_BYTES:
        raise InvalidRequest(f"Profile picture exceeds {settings.MAX_PICTURE_BYTES} bytes")
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


@app.put("/api/users/profile")
def update_profile(
    first_name: Optional[str] = Form(None),
    middle_name: Optional[str] = Form(None),
    last_name: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    age: Optional[int] = Form(None, ge=0, le=150),
    address: Optional[str] = Form(None),
    clear_picture: bool = Form(False),
    picture: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
):
    changes = {}
    for field, value in (("first_name", first_name), ("last_name", last_name)):
        if value is not None:
            if not value.strip():
                raise InvalidRequest(f"{field} cannot be empty")
            changes[field] = value.strip()
    for field, value in (("middle_name", middle_name), ("phone", phone), ("address", address)):
        if value is not None:
            changes[field] = value.strip() or None
    if age is not None:
        changes["age"] = age

    if picture is not None and picture.filename:
        changes["picture"] = _picture_data_uri(picture)
    elif clear_picture:
        changes["picture"] = None

    if changes:
        update_document("user", str(user["_id"]), changes)
    return public_user(get_document_by_id("user", str(user["_id"])))


@app.put("/api/users/{user_id}/admin")
def set_user_role(user_id: str, payload: RoleUpdate, admin: dict = Depends(get_current_admin)):
    if object_id(user_id) == admin["_id"]:
        raise Forbidden("You cannot change your own admin status")
    if not update_document("user", user_id, {"is_admin": payload.is_admin}):
        raise NotFound("User not found")
    logger.info("User %s is_admin=%s (by %s)", user_id, payload.is_admin, admin["_id"])
    return public_user(get_document_by_id("user", user_id))


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, admin: dict = Depends(get_current_admin)):
    oid = object_id(user_id)
    if oid == admin["_id"]:
        raise Forbidden("You cannot delete your own account")
    # the cart released is the one removed, not an earlier read
    user = collection("user").find_one_and_delete({"_id": oid}) if oid else None
    if not user:
        raise NotFound("User not found")
    released = release_cart(user)
    logger.info("User %s deleted by %s, %d reserved units returned to stock", user_id, admin["_id"], released)
    return {"status": "deleted"}


# ------------------------- Products ---------------------------
class ProductCreate(Product):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = None
    type: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    description: Optional[str] = None


PRODUCT_SORTS = {
    "newest": [("created_at", -1)],
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "name": [("name", 1)],
}


@app.get("/api/products")
def list_products(
    category: Optional[str] = Query(None, alias="type"),
    q: Optional[str] = None,
    sort: str = "newest",
):
    if sort not in PRODUCT_SORTS:
        raise InvalidRequest(f"Unknown sort. Use one of: {', '.join(PRODUCT_SORTS)}")
    query = {}
    if category:
        query["type"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
        ]
    products = get_documents("product", query, sort=PRODUCT_SORTS[sort])
    return [serialize_doc(p) for p in products]


@app.post("/api/products")
def create_product(payload: ProductCreate, admin: dict = Depends(get_current_admin)):
    new_id = create_document("product", payload)
    logger.info("Product %s created by %s", new_id, admin["_id"])
    return serialize_doc(get_document_by_id("product", new_id))


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    doc = get_document_by_id("product", product_id)
    if not doc:
        raise NotFound("Product not found")
    return serialize_doc(doc)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin: dict = Depends(get_current_admin)):
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise InvalidRequest("No changes")
    if not update_document("product", product_id, changes):
        raise NotFound("Product not found")
    return serialize_doc(get_document_by_id("product", product_id))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(get_current_admin)):
    if not delete_document("product", product_id):
        raise NotFound("Product not found")
    logger.info("Product %s deleted by %s", product_id, admin["_id"])
    return {"status": "deleted"}


# ------------------------- Cart -------------------------------
class CartUpdate(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)


@app.get("/api/cart")
def get_cart(user: dict = Depends(get_current_user)):
    return read_cart(user["_id"])


@app.post("/api/cart")
def update_cart(payload: CartUpdate, user: dict = Depends(get_current_user)):
    set_cart_quantity(user["_id"], payload.product_id, payload.quantity)
    return read_cart(user["_id"])


@app.delete("/api/cart/{product_id}")
def delete_cart_line(product_id: str, user: dict = Depends(get_current_user)):
    remove_cart_line(user["_id"], product_id)
    return read_cart(user["_id"])


# ------------------------- Orders -----------------------------
class OrderCreate(BaseModel):
    product_ids: List[str]
    delivery: Optional[DeliveryCoords] = None


class OrderStatusUpdate(BaseModel):
    status: str


@app.post("/api/orders")
def create_order(payload: OrderCreate, user: dict = Depends(get_current_user)):
    order = place_order(user["_id"], payload.product_ids, payload.delivery)
    return serialize_doc(order)


@app.get("/api/orders/my")
def list_my_orders(user: dict = Depends(get_current_user)):
    orders = get_documents("order", {"user_id": str(user["_id"])}, sort=[("created_at", -1)])
    return [serialize_doc(o) for o in orders]


@app.get("/api/orders")
def list_orders(admin: dict = Depends(get_current_admin)):
    orders = get_documents("order", sort=[("created_at", -1)])
    return [serialize_doc(o) for o in orders]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user)):
    doc = get_document_by_id("order", order_id)
    if not doc:
        raise NotFound("Order not found")
    if doc.get("user_id") != str(user["_id"]) and not user.get("is_admin"):
        raise Forbidden("Not your order")
    return serialize_doc(doc)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, admin: dict = Depends(get_current_admin)):
    return serialize_doc(set_order_status(order_id, payload.status))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
