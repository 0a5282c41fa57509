import logging
import os
from datetime import datetime, timezone
from typing import List, Literal, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

import database
from accounts import get_client, get_provider, list_providers, register_client, register_provider
from cart import CartStore, total
from config import DELIVERY_FEE, LOG_LEVEL
from eta import calculate_eta
from local_store import LocalStore, get_theme, set_theme, toggle_theme
from locations import GeolocationError, get_location, share_location
from menu import (
    ImageUploadError,
    MenuRecordNotFound,
    cart_item_for,
    create_item,
    create_promo,
    create_section,
    customer_menu,
    delete_item,
    delete_promo,
    delete_section,
    list_items,
    list_promos,
    list_sections,
    replace_item_image,
    update_item,
    update_promo,
)
from orders import (
    InvalidCartLine,
    OrderNotFound,
    OrderStoreError,
    has_open_order,
    list_orders,
    list_provider_orders,
    mark_delivered,
    order_stats,
    place_order,
)
from promos import MalformedPromoValue, round2
from schemas import (
    CartAddRequest,
    CartQuantityUpdate,
    CartView,
    ClientProfile,
    ETAResult,
    LocationRecord,
    LocationShare,
    MenuEntry,
    MenuItemCreate,
    MenuItemUpdate,
    MenuSectionCreate,
    Order,
    OrderStats,
    OrderView,
    PlaceOrderResponse,
    Promo,
    PromoCreate,
    PromoUpdate,
    ServiceProviderProfile,
    ThemeUpdate,
    TravelMode,
)
from session import ROLES, SessionContext
from storage import ObjectStorage

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(LOG_LEVEL.upper())),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

logger = structlog.get_logger()

app = FastAPI(title="Food Ordering System API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

OrderFilter = Literal["all", "pending", "delivered"]
PromoFilter = Literal["all", "active", "upcoming", "expired"]


# ----------------------------
# Error mapping
# ----------------------------
def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning("request_failed", path=request.url.path, status=status_code, error=str(exc))
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


for _exc, _status in (
    (InvalidCartLine, 400),
    (MalformedPromoValue, 400),
    (PermissionError, 403),
    (MenuRecordNotFound, 404),
    (OrderNotFound, 404),
    (GeolocationError, 422),
    (ImageUploadError, 502),
    (OrderStoreError, 503),
    (ValueError, 400),
):
    app.add_exception_handler(_exc, _error_handler(_status))


# ----------------------------
# Dependencies
# ----------------------------
def get_database():
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return database.db


def get_storage(db=Depends(get_database)) -> ObjectStorage:
    return ObjectStorage(db)


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def get_routing_session():
    # None means the module-level requests API
    return None


def get_session(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
) -> SessionContext:
    if x_user_role is not None and x_user_role not in ROLES:
        raise HTTPException(status_code=400, detail="Unknown user role")
    return SessionContext(user_id=x_user_id, role=x_user_role, session_id=x_session_id)


def require_user(session: SessionContext = Depends(get_session)) -> SessionContext:
    if not session.user_id:
        raise HTTPException(status_code=401, detail="Sign in required")
    return session


def require_provider(session: SessionContext = Depends(require_user)) -> SessionContext:
    if not session.is_provider:
        raise HTTPException(status_code=403, detail="Service provider account required")
    return session


def get_local_store(session: SessionContext = Depends(get_session), db=Depends(get_database)) -> LocalStore:
    if not session.session_id:
        raise HTTPException(status_code=400, detail="X-Session-Id header required")
    try:
        return session.local_store(db)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def get_cart_store(store: LocalStore = Depends(get_local_store), now: datetime = Depends(get_now)) -> CartStore:
    return CartStore(store, clock=lambda: now)


def cart_view(cart) -> CartView:
    subtotal = total(cart)
    return CartView(lines=cart, subtotal=subtotal, delivery_fee=DELIVERY_FEE, total=round2(subtotal + DELIVERY_FEE))


# ----------------------------
# Root & health
# ----------------------------
@app.get("/")
def read_root():
    return {"message": "Food Ordering Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    db = database.db
    if db is not None:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# ----------------------------
# Accounts
# ----------------------------
@app.post("/clients")
def create_client_profile(profile: ClientProfile, session: SessionContext = Depends(require_user),
                          db=Depends(get_database)):
    return register_client(db, session.user_id, profile)


@app.get("/clients/me")
def read_client_profile(session: SessionContext = Depends(require_user), db=Depends(get_database)):
    doc = get_client(db, session.user_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Client profile not found")
    return doc


@app.post("/service-providers")
def create_provider_profile(profile: ServiceProviderProfile, session: SessionContext = Depends(require_user),
                            db=Depends(get_database)):
    return register_provider(db, session.user_id, profile)


@app.get("/service-providers")
def read_providers(db=Depends(get_database)):
    return list_providers(db)


@app.get("/service-providers/{provider_id}")
def read_provider(provider_id: str, db=Depends(get_database)):
    doc = get_provider(db, provider_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Service provider not found")
    return doc


@app.get("/service-providers/{provider_id}/menu", response_model=List[MenuEntry])
def read_provider_menu(provider_id: str, db=Depends(get_database), now: datetime = Depends(get_now)):
    return customer_menu(db, provider_id, now)


# ----------------------------
# Menu management (providers)
# ----------------------------
@app.get("/menu/sections")
def read_sections(session: SessionContext = Depends(require_provider), db=Depends(get_database)):
    return list_sections(db, session.user_id)


@app.post("/menu/sections")
def add_section(payload: MenuSectionCreate, session: SessionContext = Depends(require_provider),
                db=Depends(get_database)):
    return create_section(db, session.user_id, payload)


@app.delete("/menu/sections/{section_id}")
def remove_section(section_id: str, session: SessionContext = Depends(require_provider),
                   db=Depends(get_database), storage: ObjectStorage = Depends(get_storage)):
    removed = delete_section(db, storage, session.user_id, section_id)
    return {"deleted": True, "items_removed": removed}


@app.get("/menu/items")
def read_items(section_id: Optional[str] = None, session: SessionContext = Depends(require_provider),
               db=Depends(get_database)):
    return list_items(db, session.user_id, section_id)


@app.post("/menu/items")
def add_item(payload: MenuItemCreate, session: SessionContext = Depends(require_provider),
             db=Depends(get_database)):
    return create_item(db, session.user_id, payload)


@app.patch("/menu/items/{item_id}")
def edit_item(item_id: str, patch: MenuItemUpdate, session: SessionContext = Depends(require_provider),
              db=Depends(get_database)):
    return update_item(db, session.user_id, item_id, patch)


@app.delete("/menu/items/{item_id}")
def remove_item(item_id: str, session: SessionContext = Depends(require_provider),
                db=Depends(get_database), storage: ObjectStorage = Depends(get_storage)):
    delete_item(db, storage, session.user_id, item_id)
    return {"deleted": True}


@app.put("/menu/items/{item_id}/image")
async def upload_item_image(item_id: str, request: Request, filename: str = Query(..., min_length=1),
                            session: SessionContext = Depends(require_provider),
                            db=Depends(get_database), storage: ObjectStorage = Depends(get_storage)):
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Image body is empty")
    url = await run_in_threadpool(
        replace_item_image, db, storage, session.user_id, item_id, filename, data,
        request.headers.get("content-type"),
    )
    return {"image_url": url}


@app.get("/storage/{path:path}")
def read_object(path: str, storage: ObjectStorage = Depends(get_storage)):
    try:
        data, content_type = storage.download(path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Object not found")
    return Response(content=data, media_type=content_type or "application/octet-stream")


# ----------------------------
# Promos (providers)
# ----------------------------
@app.get("/promos", response_model=List[Promo])
def read_promos(status: PromoFilter = "all", session: SessionContext = Depends(require_provider),
                db=Depends(get_database), now: datetime = Depends(get_now)):
    return list_promos(db, session.user_id, status, now)


@app.post("/promos", response_model=Promo)
def add_promo(payload: PromoCreate, session: SessionContext = Depends(require_provider),
              db=Depends(get_database)):
    return create_promo(db, session.user_id, payload)


@app.patch("/promos/{promo_id}", response_model=Promo)
def edit_promo(promo_id: str, patch: PromoUpdate, session: SessionContext = Depends(require_provider),
               db=Depends(get_database)):
    return update_promo(db, session.user_id, promo_id, patch)


@app.delete("/promos/{promo_id}")
def remove_promo(promo_id: str, session: SessionContext = Depends(require_provider),
                 db=Depends(get_database)):
    delete_promo(db, session.user_id, promo_id)
    return {"deleted": True}


# ----------------------------
# Session cart & theme
# ----------------------------
@app.get("/cart", response_model=CartView)
def read_cart(cart_store: CartStore = Depends(get_cart_store)):
    return cart_view(cart_store.get_cart())


@app.post("/cart/items", response_model=CartView)
def add_cart_item(payload: CartAddRequest, cart_store: CartStore = Depends(get_cart_store),
                  db=Depends(get_database), now: datetime = Depends(get_now)):
    item = cart_item_for(db, payload.item_id, payload.provider_id, now)
    return cart_view(cart_store.add_item(item, payload.provider_id))


@app.patch("/cart/items/{provider_id}/{item_id}", response_model=CartView)
def update_cart_item(provider_id: str, item_id: str, payload: CartQuantityUpdate,
                     cart_store: CartStore = Depends(get_cart_store)):
    return cart_view(cart_store.update_quantity(item_id, provider_id, payload.quantity))


@app.delete("/cart/items/{provider_id}/{item_id}", response_model=CartView)
def remove_cart_item(provider_id: str, item_id: str, cart_store: CartStore = Depends(get_cart_store)):
    return cart_view(cart_store.remove_item(item_id, provider_id))


@app.delete("/cart", response_model=CartView)
def clear_cart(cart_store: CartStore = Depends(get_cart_store)):
    return cart_view(cart_store.clear())


@app.get("/session/theme")
def read_theme(store: LocalStore = Depends(get_local_store)):
    return {"theme": get_theme(store)}


@app.put("/session/theme")
def write_theme(payload: ThemeUpdate, store: LocalStore = Depends(get_local_store)):
    return {"theme": set_theme(store, payload.theme)}


@app.post("/session/theme/toggle")
def flip_theme(store: LocalStore = Depends(get_local_store)):
    return {"theme": toggle_theme(store)}


# ----------------------------
# Orders (Customer -> Provider)
# ----------------------------
@app.post("/orders", response_model=PlaceOrderResponse)
def submit_order(session: SessionContext = Depends(require_user), cart_store: CartStore = Depends(get_cart_store),
                 db=Depends(get_database)):
    order_id = place_order(db, cart_store, session.user_id, DELIVERY_FEE)
    return PlaceOrderResponse(order_id=order_id)


@app.get("/orders", response_model=List[OrderView])
def read_orders(status: OrderFilter = "all", session: SessionContext = Depends(require_user),
                db=Depends(get_database)):
    return list_orders(db, session.user_id, status)


@app.get("/provider/orders", response_model=List[OrderView])
def read_provider_orders(status: OrderFilter = "all", session: SessionContext = Depends(require_provider),
                         db=Depends(get_database)):
    return list_provider_orders(db, session.user_id, status)


@app.get("/provider/orders/stats", response_model=OrderStats)
def read_provider_stats(session: SessionContext = Depends(require_provider), db=Depends(get_database)):
    return order_stats(list_provider_orders(db, session.user_id))


@app.patch("/orders/{order_id}/delivered", response_model=Order)
def deliver_order(order_id: str, session: SessionContext = Depends(require_user), db=Depends(get_database)):
    return mark_delivered(db, order_id, actor_id=session.user_id)


# ----------------------------
# Locations & ETA
# ----------------------------
@app.put("/locations/me", response_model=LocationRecord)
def write_location(payload: LocationShare, session: SessionContext = Depends(require_user),
                   db=Depends(get_database), now: datetime = Depends(get_now)):
    if session.role not in ROLES:
        raise HTTPException(status_code=400, detail="X-User-Role header required")
    return share_location(db, session.role, session.user_id, payload, now)


@app.get("/eta", response_model=Optional[ETAResult])
def read_eta(client_id: str, provider_id: str, mode: TravelMode = "foot",
             session: SessionContext = Depends(require_user),
             db=Depends(get_database), routing=Depends(get_routing_session)):
    # Customers see their own route; providers only while delivering to them
    if session.user_id != client_id and not (
        session.is_provider and session.user_id == provider_id and has_open_order(db, client_id, provider_id)
    ):
        raise PermissionError("Not allowed to track this delivery")
    client_location = get_location(db, "client", client_id)
    provider_location = get_location(db, "service_provider", provider_id)
    if client_location is None or provider_location is None:
        raise HTTPException(status_code=404, detail="Both locations must be shared first")
    return calculate_eta(provider_location.point(), client_location.point(), mode, session=routing)


if __name__ == "__main__":
    import uvicorn
    from config import PORT
    uvicorn.run(app, host="0.0.0.0", port=PORT)
