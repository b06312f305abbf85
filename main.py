import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field

import database
from auth import (
    LoginRedirect,
    authenticate_user,
    create_access_token,
    get_current_user,
    get_password_hash,
    require_admin,
    require_user,
)
from database import ensure_indexes, get_db
from schemas import OrderStatus, ProductForm
from services import AuthService, CartService, OrderService, ProductService
from settings import (
    ADMIN_EMAIL,
    ADMIN_LOGIN_PATH,
    ADMIN_PASSWORD,
    CORS_ORIGINS,
    LOG_LEVEL,
    PORT,
    STRICT_ORDER_STATUS,
    USER_LOGIN_PATH,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def bootstrap_admin(db):
    """Create the configured admin account if missing and make sure it holds the admin role."""
    auth = AuthService(db)
    user = auth.find_by_email(ADMIN_EMAIL)
    if user:
        user_id = str(user["_id"])
    else:
        user_id = auth.register(ADMIN_EMAIL, get_password_hash(ADMIN_PASSWORD), "Admin")["id"]
    auth.grant_role(user_id)
    logger.info(f"Admin account ready: {ADMIN_EMAIL}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
        if ADMIN_EMAIL and ADMIN_PASSWORD:
            bootstrap_admin(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="Petani Maju API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LoginRedirect)
async def login_redirect_handler(request: Request, exc: LoginRedirect):
    if exc.detail:
        return JSONResponse(
            {"detail": exc.detail},
            status_code=status.HTTP_303_SEE_OTHER,
            headers={"Location": exc.location},
        )
    return RedirectResponse(exc.location, status_code=status.HTTP_303_SEE_OTHER)


# Request / response models
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None


class CartItemIn(BaseModel):
    product_id: str


class QuantityIn(BaseModel):
    quantity: int


class CheckoutIn(BaseModel):
    shipping_address: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    bank_name: str = Field(..., min_length=1)


class StatusIn(BaseModel):
    status: OrderStatus


# Routes
@app.get("/")
def landing(user=Depends(get_current_user), db=Depends(get_db)):
    products = ProductService(db).landing_products()
    cart_count = CartService(db).count(str(user["_id"])) if user else 0
    return {"products": products, "cart_count": cart_count}


@app.get("/health")
def health(db=Depends(get_db)):
    response = {
        "backend": "running",
        "database": "not available",
        "database_name": getattr(db, "name", None),
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        response["database"] = f"error: {str(e)[:50]}"
    return response


# Auth endpoints
@app.get("/auth")
def login_view():
    return {"message": "Log in with your email and password", "login": USER_LOGIN_PATH}


@app.post("/auth", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    return {"access_token": create_access_token({"sub": str(user["_id"])}), "token_type": "bearer"}


@app.post("/auth/register", status_code=201)
def register(payload: UserCreate, db=Depends(get_db)):
    return AuthService(db).register(payload.email, get_password_hash(payload.password), payload.full_name)


@app.post("/auth/logout")
def logout():
    # tokens are stateless; the client drops it
    return {"message": "Logged out", "redirect": ADMIN_LOGIN_PATH}


@app.get("/petani")
def admin_login_view():
    return {"message": "Admin login", "login": ADMIN_LOGIN_PATH}


@app.post("/petani", response_model=Token)
def admin_login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    if not AuthService(db).is_admin(str(user["_id"])):
        raise HTTPException(status_code=403, detail="Admins only")
    return {"access_token": create_access_token({"sub": str(user["_id"])}), "token_type": "bearer"}


# Catalog endpoints
@app.get("/products")
def list_products(db=Depends(get_db)):
    return ProductService(db).list_products()


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return ProductService(db).get_product(product_id)


# Cart endpoints (per-user)
@app.get("/cart")
def get_cart(user=Depends(require_user), db=Depends(get_db)):
    return CartService(db).view(str(user["_id"]))


@app.post("/cart")
def add_to_cart(payload: CartItemIn, user=Depends(get_current_user), db=Depends(get_db)):
    if user is None:
        raise LoginRedirect(USER_LOGIN_PATH, "Please log in first to add items to your cart")
    cart = CartService(db)
    cart.add(str(user["_id"]), payload.product_id)
    return {"message": "Product added to cart", "cart": cart.view(str(user["_id"]))}


@app.patch("/cart/{item_id}")
def update_cart_item(item_id: str, payload: QuantityIn, user=Depends(require_user), db=Depends(get_db)):
    cart = CartService(db)
    cart.update_quantity(str(user["_id"]), item_id, payload.quantity)
    return cart.view(str(user["_id"]))


@app.delete("/cart/{item_id}")
def remove_from_cart(item_id: str, user=Depends(require_user), db=Depends(get_db)):
    cart = CartService(db)
    cart.remove(str(user["_id"]), item_id)
    return cart.view(str(user["_id"]))


# Checkout
@app.post("/cart/checkout", status_code=201)
def checkout(payload: CheckoutIn, user=Depends(require_user), db=Depends(get_db)):
    order = OrderService(db).checkout(
        str(user["_id"]),
        shipping_address=payload.shipping_address,
        phone=payload.phone,
        bank_name=payload.bank_name,
    )
    return {"message": "Order created", "order": order, "redirect": "/"}


# Admin endpoints
@app.get("/admin/dashboard")
def dashboard(admin=Depends(require_admin), db=Depends(get_db)):
    return OrderService(db).stats()


@app.get("/admin/products")
def admin_list_products(admin=Depends(require_admin), db=Depends(get_db)):
    return ProductService(db).list_products()


@app.get("/admin/products/{product_id}/form", response_model=ProductForm)
def admin_product_form(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return ProductService(db).get_form(product_id)


@app.post("/admin/products", status_code=201)
def admin_create_product(form: ProductForm, admin=Depends(require_admin), db=Depends(get_db)):
    products = ProductService(db)
    product_id = products.create(form)
    return {"message": "Product added", "id": product_id, "products": products.list_products()}


@app.put("/admin/products/{product_id}")
def admin_update_product(product_id: str, form: ProductForm, admin=Depends(require_admin), db=Depends(get_db)):
    products = ProductService(db)
    products.update(product_id, form)
    return {"message": "Product updated", "products": products.list_products()}


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: str, confirm: bool = False, admin=Depends(require_admin),
                         db=Depends(get_db)):
    if not confirm:
        raise HTTPException(status_code=400, detail="Deletion must be confirmed")
    products = ProductService(db)
    products.delete(product_id)
    return {"message": "Product deleted", "products": products.list_products()}


@app.get("/admin/orders")
def admin_list_orders(admin=Depends(require_admin), db=Depends(get_db)):
    return OrderService(db).list_orders()


@app.get("/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return OrderService(db).get_order(order_id)


@app.patch("/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: StatusIn, admin=Depends(require_admin),
                              db=Depends(get_db)):
    orders = OrderService(db, strict_status=STRICT_ORDER_STATUS)
    orders.update_status(order_id, payload.status)
    return {"message": "Order status updated", "orders": orders.list_orders()}


# Seed demo products when the catalog is empty (admin only)
@app.post("/admin/seed")
def seed(admin=Depends(require_admin), db=Depends(get_db)):
    ids = ProductService(db).seed_demo()
    return {"seeded": bool(ids), "ids": ids}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
