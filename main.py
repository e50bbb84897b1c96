import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from auth import IdentityService
from cart import CartStore
from catalog import BannerGateway, ProductGateway, SettingsGateway
from checkout import CheckoutOrchestrator
from config import Settings
from database import db
from device_store import DeviceStore
from errors import AuthorizationError, StoreError, ValidationError
from support import ANONYMOUS_READER, NotificationCenter, SupportMailbox
from payment import GibrapayClient
from schemas import Banner, BannerUpdate, Notification, Product, ProductUpdate, StoreSettings
from storage import ObjectStorage

settings = Settings.from_env()

logging.basicConfig(level=settings.log_level, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("mozstore")

app = FastAPI(title="Moz Store Digital API", description="Digital goods store with M-Pesa checkout via Gibrapay")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if not isinstance(exc, (ValidationError, AuthorizationError)):
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/")
def read_root():
    return {"message": "Moz Store Digital Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "payment_gateway": "✅ Configured" if settings.gibrapay_api_key and settings.gibrapay_wallet_id else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but error: {str(e)[:100]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:100]}"
    return response


# -------------------- Dependencies --------------------

def get_optional_database():
    return db


def get_database(database=Depends(get_optional_database)):
    if database is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return database


def get_settings() -> Settings:
    return settings


def get_payment_client() -> GibrapayClient:
    return GibrapayClient.from_settings(settings)


def get_object_storage() -> ObjectStorage:
    return ObjectStorage.from_settings(settings)


def get_identity(database=Depends(get_database), cfg: Settings = Depends(get_settings)) -> IdentityService:
    return IdentityService(database, cfg)


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def current_session(token: Optional[str] = Depends(bearer_token), identity: IdentityService = Depends(get_identity)):
    return identity.current_session(token)


def require_session(session=Depends(current_session)) -> dict:
    if session is None:
        raise AuthorizationError("Login required")
    return session


def require_admin(token: Optional[str] = Depends(bearer_token), identity: IdentityService = Depends(get_identity)) -> dict:
    return identity.require_admin(token)


def get_device(x_device_id: str = Header(...), database=Depends(get_database)) -> DeviceStore:
    return DeviceStore(database, x_device_id)


def get_cart(device: DeviceStore = Depends(get_device)) -> CartStore:
    return CartStore(device)


def get_checkout(
    cart: CartStore = Depends(get_cart),
    database=Depends(get_database),
    payment=Depends(get_payment_client),
    cfg: Settings = Depends(get_settings),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(database, cart, payment, cfg)


def get_products(database=Depends(get_optional_database)) -> ProductGateway:
    return ProductGateway(database)


def get_banners(database=Depends(get_optional_database)) -> BannerGateway:
    return BannerGateway(database)


def get_mailbox(database=Depends(get_database)) -> SupportMailbox:
    return SupportMailbox(database)


def get_notifications(database=Depends(get_database)) -> NotificationCenter:
    return NotificationCenter(database)


# -------------------- Catalog --------------------

@app.get("/api/products")
def list_products(products: ProductGateway = Depends(get_products)):
    return products.list_all()


@app.get("/api/products/promotions")
def list_promotions(products: ProductGateway = Depends(get_products)):
    return products.list_promoted()


@app.get("/api/products/new")
def list_new_products(products: ProductGateway = Depends(get_products)):
    return products.list_new()


@app.get("/api/products/category/{category}")
def list_category(category: str, products: ProductGateway = Depends(get_products)):
    return products.list_by_category(category)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, products: ProductGateway = Depends(get_products)):
    return products.get(product_id)


@app.get("/api/banners")
def list_banners(banners: BannerGateway = Depends(get_banners)):
    return banners.list_active()


@app.get("/api/settings")
def get_store_settings(database=Depends(get_optional_database)):
    return SettingsGateway(database).get()


# -------------------- Device state --------------------

class CartAdd(BaseModel):
    product_id: str


class CartQuantity(BaseModel):
    quantity: int


class CookieDecision(BaseModel):
    decision: str = Field(..., description="accepted | rejected")


def cart_view(cart: CartStore) -> dict:
    return {"items": cart.items(), "total": cart.total(), "count": cart.count()}


@app.get("/api/cart")
def get_cart_contents(cart: CartStore = Depends(get_cart)):
    return cart_view(cart)


@app.post("/api/cart/items")
def add_to_cart(body: CartAdd, cart: CartStore = Depends(get_cart), products: ProductGateway = Depends(get_products)):
    cart.add(products.get(body.product_id))
    return cart_view(cart)


@app.patch("/api/cart/items/{product_id}")
def update_cart_item(product_id: str, body: CartQuantity, cart: CartStore = Depends(get_cart)):
    cart.set_quantity(product_id, body.quantity)
    return cart_view(cart)


@app.delete("/api/cart/items/{product_id}")
def remove_cart_item(product_id: str, cart: CartStore = Depends(get_cart)):
    cart.remove(product_id)
    return cart_view(cart)


@app.delete("/api/cart")
def clear_cart(cart: CartStore = Depends(get_cart)):
    cart.clear()
    return cart_view(cart)


@app.get("/api/cookie-consent")
def get_cookie_consent(device: DeviceStore = Depends(get_device)):
    return {"decision": device.get_cookie_consent(), "show_banner": device.should_show_cookie_banner()}


@app.post("/api/cookie-consent")
def set_cookie_consent(body: CookieDecision, device: DeviceStore = Depends(get_device)):
    device.set_cookie_consent(body.decision)
    return {"decision": body.decision, "show_banner": False}


# -------------------- Checkout --------------------

class PhoneSubmit(BaseModel):
    phone_number: str


@app.post("/api/checkout")
def start_checkout(checkout: CheckoutOrchestrator = Depends(get_checkout)):
    return checkout.start()


@app.get("/api/checkout/{checkout_id}")
def get_checkout_state(checkout_id: str, checkout: CheckoutOrchestrator = Depends(get_checkout)):
    return checkout.get(checkout_id)


@app.post("/api/checkout/{checkout_id}/submit")
def submit_checkout(checkout_id: str, body: PhoneSubmit, checkout: CheckoutOrchestrator = Depends(get_checkout)):
    return checkout.submit(checkout_id, body.phone_number)


@app.post("/api/checkout/{checkout_id}/refresh")
def refresh_checkout(checkout_id: str, checkout: CheckoutOrchestrator = Depends(get_checkout)):
    return checkout.refresh_settlement(checkout_id)


@app.post("/api/checkout/{checkout_id}/complete")
def complete_checkout(checkout_id: str, checkout: CheckoutOrchestrator = Depends(get_checkout)):
    return checkout.complete(checkout_id)


# -------------------- Accounts --------------------

class RegisterPayload(BaseModel):
    email: EmailStr
    password: str
    display_name: str
    phone: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


@app.post("/api/auth/register")
def register(body: RegisterPayload, identity: IdentityService = Depends(get_identity)):
    user = identity.register(body.email, body.password, body.display_name, body.phone)
    token = identity.login(body.email, body.password)
    return {"user": user, "token": token}


@app.post("/api/auth/login")
def login(body: LoginPayload, identity: IdentityService = Depends(get_identity)):
    token = identity.login(body.email, body.password)
    return {"token": token, "user": identity.current_user(token)}


@app.post("/api/auth/logout")
def logout(token: Optional[str] = Depends(bearer_token), identity: IdentityService = Depends(get_identity)):
    if token:
        identity.logout(token)
    return {"logged_out": True}


@app.get("/api/auth/me")
def me(token: Optional[str] = Depends(bearer_token), identity: IdentityService = Depends(get_identity)):
    return {"user": identity.current_user(token)}


# -------------------- Support --------------------

class SupportPayload(BaseModel):
    name: str
    email: EmailStr
    message: str


@app.post("/api/support")
def create_support_message(body: SupportPayload, mailbox: SupportMailbox = Depends(get_mailbox)):
    inserted_id = mailbox.submit_ticket(body.name, body.email, body.message)
    return {"inserted_id": inserted_id}


@app.get("/api/support/responses")
def my_support_responses(session: dict = Depends(require_session), mailbox: SupportMailbox = Depends(get_mailbox)):
    return mailbox.user_responses(session["email"])


@app.post("/api/support/responses/{message_id}/read")
def read_support_response(message_id: str, session: dict = Depends(require_session), mailbox: SupportMailbox = Depends(get_mailbox)):
    mailbox.mark_response_read(session["email"], message_id)
    return {"updated": True}


# -------------------- Notifications --------------------

@app.get("/api/notifications")
def my_notifications(
    session=Depends(current_session),
    device: DeviceStore = Depends(get_device),
    notifications: NotificationCenter = Depends(get_notifications),
):
    user_id = session.get("user_id") if session else None
    items = notifications.for_device(user_id, device)
    return {"items": items, "unread": sum(1 for n in items if not n["is_read"])}


@app.post("/api/notifications/{notification_id}/read")
def read_notification(notification_id: str, session=Depends(current_session), device: DeviceStore = Depends(get_device)):
    user_id = session.get("user_id") if session else None
    device.mark_notification_read(user_id or ANONYMOUS_READER, notification_id)
    return {"updated": True}


# -------------------- Admin --------------------

class AdminResponse(BaseModel):
    response: str


class NotificationToggle(BaseModel):
    is_active: bool


@app.post("/api/admin/login")
def admin_login(body: LoginPayload, identity: IdentityService = Depends(get_identity)):
    return {"token": identity.admin_login(body.email, body.password)}


@app.post("/api/admin/products")
def admin_create_product(body: Product, _=Depends(require_admin), products: ProductGateway = Depends(get_products)):
    return {"inserted_id": products.create(body)}


@app.patch("/api/admin/products/{product_id}")
def admin_update_product(product_id: str, body: ProductUpdate, _=Depends(require_admin), products: ProductGateway = Depends(get_products)):
    products.update(product_id, body)
    return products.get(product_id)


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, _=Depends(require_admin), products: ProductGateway = Depends(get_products)):
    products.delete(product_id)
    return {"deleted": True}


@app.get("/api/admin/banners")
def admin_list_banners(_=Depends(require_admin), banners: BannerGateway = Depends(get_banners)):
    return banners.list_all()


@app.post("/api/admin/banners")
def admin_create_banner(body: Banner, _=Depends(require_admin), banners: BannerGateway = Depends(get_banners)):
    return {"inserted_id": banners.create(body)}


@app.patch("/api/admin/banners/{banner_id}")
def admin_update_banner(banner_id: str, body: BannerUpdate, _=Depends(require_admin), banners: BannerGateway = Depends(get_banners)):
    banners.update(banner_id, body)
    return {"updated": True}


@app.delete("/api/admin/banners/{banner_id}")
def admin_delete_banner(banner_id: str, _=Depends(require_admin), banners: BannerGateway = Depends(get_banners)):
    banners.delete(banner_id)
    return {"deleted": True}


@app.get("/api/admin/notifications")
def admin_list_notifications(_=Depends(require_admin), notifications: NotificationCenter = Depends(get_notifications)):
    return notifications.list_all()


@app.post("/api/admin/notifications")
def admin_create_notification(body: Notification, _=Depends(require_admin), notifications: NotificationCenter = Depends(get_notifications)):
    return {"inserted_id": notifications.create(body)}


@app.patch("/api/admin/notifications/{notification_id}")
def admin_toggle_notification(notification_id: str, body: NotificationToggle, _=Depends(require_admin), notifications: NotificationCenter = Depends(get_notifications)):
    notifications.set_active(notification_id, body.is_active)
    return {"updated": True}


@app.delete("/api/admin/notifications/{notification_id}")
def admin_delete_notification(notification_id: str, _=Depends(require_admin), notifications: NotificationCenter = Depends(get_notifications)):
    notifications.delete(notification_id)
    return {"deleted": True}


@app.get("/api/admin/support")
def admin_list_support(_=Depends(require_admin), mailbox: SupportMailbox = Depends(get_mailbox)):
    return mailbox.list_tickets()


@app.post("/api/admin/support/{ticket_id}/read")
def admin_read_support(ticket_id: str, _=Depends(require_admin), mailbox: SupportMailbox = Depends(get_mailbox)):
    mailbox.mark_ticket_read(ticket_id)
    return {"updated": True}


@app.post("/api/admin/support/{ticket_id}/respond")
def admin_respond_support(ticket_id: str, body: AdminResponse, _=Depends(require_admin), mailbox: SupportMailbox = Depends(get_mailbox)):
    return mailbox.respond(ticket_id, body.response)


@app.put("/api/admin/settings")
def admin_update_settings(body: StoreSettings, _=Depends(require_admin), database=Depends(get_database)):
    return SettingsGateway(database).update(body)


@app.post("/api/admin/uploads")
def admin_upload_image(
    path: str = Query("products", pattern="^(products|banners)$"),
    file: UploadFile = File(...),
    _=Depends(require_admin),
    storage: ObjectStorage = Depends(get_object_storage),
):
    return {"url": storage.upload_image(file.file, file.filename, path, file.content_type)}


@app.delete("/api/admin/uploads")
def admin_delete_image(url: str, _=Depends(require_admin), storage: ObjectStorage = Depends(get_object_storage)):
    storage.delete_image(url)
    return {"deleted": True}


@app.get("/api/admin/wallet")
def admin_wallet(_=Depends(require_admin), payment: GibrapayClient = Depends(get_payment_client)):
    return {"balance": payment.get_wallet_balance(), "transactions": payment.get_transactions()}


@app.post("/api/admin/seed")
def seed_products(_=Depends(require_admin), products: ProductGateway = Depends(get_products)):
    # Seed only if empty
    if products.list_all():
        return {"seeded": False, "message": "Products already exist"}
    samples: List[Product] = [
        Product(
            name="Netflix Premium 1 Mês",
            description="Conta Netflix Premium com acesso 4K durante 1 mês.",
            price=450,
            category="streaming",
            discount=10,
            is_new=True,
            is_promotion=True,
        ),
        Product(
            name="Spotify Premium 3 Meses",
            description="Música sem anúncios durante 3 meses.",
            price=850,
            category="streaming",
        ),
        Product(
            name="Kindle Unlimited 6 Meses",
            description="Acesso ilimitado a ebooks durante 6 meses.",
            price=1200,
            category="ebooks",
            is_new=True,
        ),
        Product(
            name="Xbox Game Pass Ultimate",
            description="Centenas de jogos para consola e PC.",
            price=2200,
            category="gaming",
            discount=8,
            is_promotion=True,
        ),
        Product(
            name="Steam Wallet 50 USD",
            description="Crédito para a loja Steam.",
            price=3200,
            category="recargas",
            discount=5,
        ),
    ]
    for p in samples:
        products.create(p)
    return {"seeded": True, "count": len(samples)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
