import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import structlog
from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

import database
from auth import create_token, get_current_user, hash_password, require_admin
from config import Settings, get_settings
from database import create_document, get_db, get_documents, utcnow
from deals import DealEngine
from errors import NotFound, ShopError
from lifecycle import OrderLifecycle
from logger import configure_logging
from media import upload_image
from orders import OrderStore, payment_history
from paytm import PaytmGateway
from scheduler import PeriodicTask
from schemas import User as UserSchema, Product as ProductSchema

log = structlog.get_logger(__name__)


def start_background_tasks(db: Database, settings: Settings) -> List[PeriodicTask]:
    deals = DealEngine(db)
    lifecycle = OrderLifecycle(OrderStore(db), PaytmGateway(settings.paytm), db, settings.frontend_url)
    tasks = [
        PeriodicTask("deal-expiry-sweep", settings.deal_sweep_interval_seconds, deals.expiry_sweep),
        PeriodicTask(
            "abandoned-order-reaper",
            settings.order_reaper_interval_seconds,
            lambda: len(lifecycle.reap_abandoned(settings.order_timeout_minutes)),
        ),
    ]
    for task in tasks:
        task.start()
    return tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    tasks = []
    if database.db is not None:
        tasks = start_background_tasks(database.db, settings)
    else:
        log.warning("database_not_configured")
    yield
    for task in tasks:
        task.stop()


app = FastAPI(title="Decor Store Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


# ----------------------- Utils -----------------------
def serialize_doc(doc):
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        out["id" if k == "_id" else k] = serialize_doc(v)
    return out


def product_oid(product_id: str) -> ObjectId:
    try:
        return ObjectId(product_id)
    except InvalidId:
        raise HTTPException(status_code=400, detail="Invalid product ID")


def get_orders(db: Database = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_deals(db: Database = Depends(get_db)) -> DealEngine:
    return DealEngine(db)


def get_gateway(settings: Settings = Depends(get_settings)) -> PaytmGateway:
    return PaytmGateway(settings.paytm)


def get_lifecycle(
    orders: OrderStore = Depends(get_orders),
    gateway: PaytmGateway = Depends(get_gateway),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OrderLifecycle:
    return OrderLifecycle(orders, gateway, db, settings.frontend_url)


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    username: str
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProductCreateBody(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    category: str
    image: Optional[str] = None
    stock: int = 10


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    image: Optional[str] = None
    stock: Optional[int] = None


class OrderCreateBody(BaseModel):
    # Presence is checked by OrderStore.create so the error message is its own
    products: Optional[List[dict]] = None
    amount: Optional[float] = None
    email: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_address: Optional[dict] = None


class StatusUpdateBody(BaseModel):
    status: Optional[str] = None


class DealBody(BaseModel):
    title: str
    description: str
    discount: int = Field(..., ge=0, le=100)
    end_date: datetime
    categories: List[str] = []
    is_active: Optional[bool] = None
    image: Optional[str] = None


class ImageBody(BaseModel):
    image: Optional[str] = None


class InitiateBody(BaseModel):
    order_id: Optional[str] = None
    amount: Optional[float] = None
    customer_info: Optional[dict] = None


class StatusQueryBody(BaseModel):
    order_id: Optional[str] = None


class AbandonBody(BaseModel):
    order_id: Optional[str] = None
    reason: Optional[str] = None


class CleanupBody(BaseModel):
    timeout_minutes: Optional[int] = Field(None, gt=0)


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Decor Store API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.post("/api/uploadImage")
def upload_image_route(body: ImageBody, settings: Settings = Depends(get_settings)):
    return {"image_url": upload_image(body.image, settings)}


# ----------------------- Auth -----------------------
@app.post("/api/auth/signup")
def signup(body: SignupBody, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    existing = db["user"].find_one({"email": body.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(
        username=body.username,
        email=body.email,
        password_hash=hash_password(body.password),
        is_admin=False,
    )
    user_id = create_document("user", user, database=db)
    token = create_token({"id": user_id, "email": body.email, "is_admin": False}, settings.jwt_secret)
    return {"token": token, "user": {"id": user_id, "username": body.username, "email": body.email, "is_admin": False}}


@app.post("/api/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": body.email})
    if not user or user.get("password_hash") != hash_password(body.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    suser = serialize_doc(user)
    is_admin = suser.get("is_admin", False)
    token = create_token({"id": suser["id"], "email": suser["email"], "is_admin": is_admin}, settings.jwt_secret)
    return {"token": token, "user": {"id": suser["id"], "username": suser.get("username"), "email": suser["email"], "is_admin": is_admin}}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return user


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, db: Database = Depends(get_db)):
    filt = {}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if category:
        filt["category"] = category
    return serialize_doc(get_documents("product", filt, limit=100, database=db))


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    item = db["product"].find_one({"_id": product_oid(product_id)})
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(item)


@app.post("/api/products", status_code=201)
def create_product(body: ProductCreateBody, db: Database = Depends(get_db), user=Depends(require_admin)):
    pid = create_document("product", ProductSchema(**body.model_dump()).model_dump(exclude_none=True), database=db)
    return {"id": pid}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, db: Database = Depends(get_db), user=Depends(require_admin)):
    pid = product_oid(product_id)
    existing = db["product"].find_one({"_id": pid})
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    ops = {"$set": update}
    # A new base price outside a deal makes the last pre-discount snapshot stale
    if "price" in update and not existing.get("deal_id") and "old_price" in existing:
        ops["$unset"] = {"old_price": ""}
    db["product"].update_one({"_id": pid}, ops)
    return {"ok": True}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), user=Depends(require_admin)):
    res = db["product"].delete_one({"_id": product_oid(product_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


# ----------------------- Orders -----------------------
@app.post("/api/orders/create-order", status_code=201)
def create_order(body: OrderCreateBody, orders: OrderStore = Depends(get_orders)):
    order = orders.create(body.model_dump())
    return {
        "success": True,
        "message": "Order placed successfully",
        "order": serialize_doc(order),
        "session_id": str(order["_id"]) if order["payment_method"] == "UPI" else None,
    }


@app.get("/api/orders/order/{order_id}")
def get_order(order_id: str, orders: OrderStore = Depends(get_orders)):
    return serialize_doc(orders.get(order_id))


@app.get("/api/orders")
def list_orders(orders: OrderStore = Depends(get_orders), user=Depends(require_admin)):
    docs = orders.list_all()
    now = utcnow()
    if not docs:
        return {"message": "No orders found", "orders": [], "count": 0, "last_updated": now.isoformat()}
    return {
        "success": True,
        "orders": serialize_doc([orders.present(o, now) for o in docs]),
        "count": len(docs),
        "last_updated": now.isoformat(),
    }


@app.get("/api/orders/{email}")
def list_orders_by_email(email: str, orders: OrderStore = Depends(get_orders)):
    return serialize_doc(orders.list_by_email(email))


@app.patch("/api/orders/update-order-status/{order_id}")
def update_order_status(
    order_id: str, body: StatusUpdateBody, orders: OrderStore = Depends(get_orders), user=Depends(require_admin)
):
    order = orders.update_status(order_id, body.status)
    return {"message": "Order status updated successfully", "order": serialize_doc(order)}


@app.delete("/api/orders/delete-order/{order_id}")
def delete_order(order_id: str, orders: OrderStore = Depends(get_orders), user=Depends(require_admin)):
    order = orders.delete(order_id)
    return {"message": "Order deleted successfully", "order": serialize_doc(order)}


# ----------------------- Deals -----------------------
@app.get("/api/deal")
def current_deal(deals: DealEngine = Depends(get_deals)):
    return serialize_doc(deals.get_active_deal())


@app.get("/api/deal/categories")
def deal_categories(deals: DealEngine = Depends(get_deals)):
    return deals.list_categories()


@app.put("/api/deal")
def upsert_deal(
    body: DealBody,
    deals: DealEngine = Depends(get_deals),
    settings: Settings = Depends(get_settings),
    user=Depends(require_admin),
):
    image_url = upload_image(body.image, settings) if body.image else None
    deal = deals.upsert_deal(body.model_dump(exclude={"image"}), image_url=image_url)
    return serialize_doc(deal)


@app.post("/api/deal/apply-to-products")
def apply_deal(deals: DealEngine = Depends(get_deals), user=Depends(require_admin)):
    return deals.apply_current()


@app.post("/api/deal/remove-from-products")
def remove_deal(deals: DealEngine = Depends(get_deals), user=Depends(require_admin)):
    return deals.remove_current()


@app.post("/api/deal/uploadImage")
def upload_deal_image(body: ImageBody, settings: Settings = Depends(get_settings), user=Depends(require_admin)):
    return {"image_url": upload_image(body.image, settings)}


# ----------------------- Payments -----------------------
@app.post("/api/payments/paytm/initiate")
def paytm_initiate(body: InitiateBody, gateway: PaytmGateway = Depends(get_gateway)):
    data = gateway.build_initiation_params(body.order_id, body.amount, body.customer_info)
    return {"success": True, "message": "Transaction initiated successfully", "data": data}


@app.post("/api/payments/paytm/callback")
async def paytm_callback(request: Request, lifecycle: OrderLifecycle = Depends(get_lifecycle)):
    form = await request.form()
    received = {k: str(v) for k, v in form.items()}
    url = await run_in_threadpool(lifecycle.handle_callback, received)
    return RedirectResponse(url, status_code=302)


@app.post("/api/payments/paytm/status")
def paytm_status(body: StatusQueryBody, gateway: PaytmGateway = Depends(get_gateway)):
    return {"success": True, "data": gateway.query_status(body.order_id)}


@app.post("/api/payments/cancel-abandoned-order")
def cancel_abandoned_order(
    body: AbandonBody, lifecycle: OrderLifecycle = Depends(get_lifecycle), user=Depends(require_admin)
):
    order = lifecycle.cancel_abandoned(body.order_id, body.reason)
    return {"success": True, "message": "Order cancelled successfully", "order": serialize_doc(order)}


@app.post("/api/payments/cleanup-pending-orders")
def cleanup_pending_orders(
    body: Optional[CleanupBody] = None,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    settings: Settings = Depends(get_settings),
    user=Depends(require_admin),
):
    timeout = (body.timeout_minutes if body else None) or settings.order_timeout_minutes
    cancelled = lifecycle.reap_abandoned(timeout)
    return {
        "success": True,
        "message": f"Cancelled {len(cancelled)} abandoned orders",
        "cancelled_orders": len(cancelled),
        "details": serialize_doc(cancelled),
    }


@app.get("/api/payments/user-payments/{email}")
def user_payments(email: str, db: Database = Depends(get_db), orders: OrderStore = Depends(get_orders)):
    if not db["user"].find_one({"email": email}):
        raise NotFound("User not found")
    return serialize_doc(payment_history(orders.list_by_email(email)))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
