# services.py
# Business rules for the storefront and the admin console.
# Every service takes the database handle explicitly so tests can hand in a stub.

import logging
from typing import List, Optional

from fastapi import HTTPException
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import (
    create_document,
    get_documents,
    now,
    serialize_doc,
    store_errors,
    to_object_id,
)
from schemas import Order, OrderItem, ProductForm, User, UserRole
from settings import ADMIN_ROLE, LANDING_PRODUCT_LIMIT

logger = logging.getLogger(__name__)

# Forward-only lifecycle, only enforced when strict status mode is on
ORDER_STATUS_FLOW = {
    "pending": {"processing", "shipped", "delivered", "cancelled"},
    "processing": {"shipped", "delivered", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}


def format_rupiah(amount) -> str:
    """Render an amount id-ID style: ``13000`` -> ``Rp 13.000``, ``2500.5`` -> ``Rp 2.500,5``."""
    whole, frac = f"{float(amount or 0):,.2f}".split(".")
    whole = whole.replace(",", ".")
    frac = frac.rstrip("0")
    return f"Rp {whole},{frac}" if frac else f"Rp {whole}"


class AuthService:
    def __init__(self, db):
        self.db = db

    def find_by_email(self, email: str):
        with store_errors("Failed to load user"):
            return self.db["users"].find_one({"email": email.lower()})

    def register(self, email: str, password_hash: str, full_name: Optional[str] = None) -> dict:
        email = email.lower()
        if self.find_by_email(email):
            raise HTTPException(status_code=400, detail="Email already registered")
        user = User(email=email, full_name=full_name, password_hash=password_hash)
        with store_errors("Failed to register user"):
            try:
                user_id = create_document(self.db, "users", user)
            except DuplicateKeyError:
                raise HTTPException(status_code=400, detail="Email already registered")
        logger.info(f"Registered user {user_id}")
        return {"id": user_id, "email": user.email, "full_name": user.full_name}

    def is_admin(self, user_id: str) -> bool:
        """Presence of an admin role row is the only authorization signal."""
        with store_errors("Failed to check access"):
            role = self.db["user_roles"].find_one({"user_id": user_id, "role": ADMIN_ROLE})
        return role is not None

    def grant_role(self, user_id: str, role: str = ADMIN_ROLE):
        doc = UserRole(user_id=user_id, role=role).model_dump()
        stamp = now()
        with store_errors("Failed to grant role"):
            self.db["user_roles"].update_one(
                doc,
                {"$setOnInsert": {"created_at": stamp}, "$set": {"updated_at": stamp}},
                upsert=True,
            )


class ProductService:
    def __init__(self, db):
        self.db = db

    def list_products(self, limit: Optional[int] = None) -> List[dict]:
        with store_errors("Failed to load products"):
            docs = get_documents(self.db, "products", newest_first=True, limit=limit)
        return [serialize_doc(d) for d in docs]

    def landing_products(self) -> List[dict]:
        return self.list_products(limit=LANDING_PRODUCT_LIMIT)

    def get_product(self, product_id: str) -> dict:
        oid = to_object_id(product_id)
        doc = None
        if oid is not None:
            with store_errors("Failed to load product"):
                doc = self.db["products"].find_one({"_id": oid})
        if not doc:
            raise HTTPException(status_code=404, detail="Product not found")
        return serialize_doc(doc)

    def get_form(self, product_id: str) -> ProductForm:
        return ProductForm.from_product(self.get_product(product_id))

    def create(self, form: ProductForm) -> str:
        with store_errors("Failed to save product"):
            product_id = create_document(self.db, "products", form.to_product())
        logger.info(f"Created product {product_id} ({form.name})")
        return product_id

    def update(self, product_id: str, form: ProductForm):
        oid = to_object_id(product_id)
        if oid is None:
            raise HTTPException(status_code=404, detail="Product not found")
        changes = form.to_product().model_dump()
        changes["updated_at"] = now()
        with store_errors("Failed to update product"):
            result = self.db["products"].update_one({"_id": oid}, {"$set": changes})
        if result.matched_count == 0:
            raise HTTPException(status_code=404, detail="Product not found")
        logger.info(f"Updated product {product_id}")

    def delete(self, product_id: str):
        oid = to_object_id(product_id)
        if oid is None:
            raise HTTPException(status_code=404, detail="Product not found")
        with store_errors("Failed to delete product"):
            result = self.db["products"].delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise HTTPException(status_code=404, detail="Product not found")
        logger.info(f"Deleted product {product_id}")

    def count(self) -> int:
        with store_errors("Failed to load products"):
            return self.db["products"].count_documents({})

    def seed_demo(self) -> List[str]:
        if self.count() > 0:
            return []
        demo = [
            {"name": "Beras Organik", "description": "Beras putih organik dari sawah Cianjur", "price": "15000",
             "category": "Beras", "stock": "120", "unit": "kg"},
            {"name": "Cabai Merah Keriting", "description": "Cabai segar panen pagi", "price": "45000",
             "category": "Sayuran", "stock": "40", "unit": "kg"},
            {"name": "Tomat Merah", "description": "Tomat segar untuk sayur dan sambal", "price": "12000",
             "category": "Sayuran", "stock": "60", "unit": "kg"},
            {"name": "Bawang Merah Brebes", "description": "Bawang merah kering pilihan", "price": "38000",
             "category": "Bumbu", "stock": "75", "unit": "kg"},
            {"name": "Jagung Manis", "description": "Jagung manis kuning", "price": "8000",
             "category": "Palawija", "stock": "90", "unit": "kg"},
            {"name": "Bayam Hijau", "description": "Bayam segar tanpa pestisida", "price": "5000",
             "category": "Sayuran", "stock": "50", "unit": "ikat"},
        ]
        return [self.create(ProductForm(**p)) for p in demo]


class CartService:
    def __init__(self, db):
        self.db = db

    def get_items(self, user_id: str) -> List[dict]:
        """Cart lines for a user, each joined with its product (None when deleted)."""
        with store_errors("Failed to load cart"):
            items = list(self.db["cart_items"].find({"user_id": user_id}).sort("created_at", 1))
            product_ids = [oid for oid in (to_object_id(it["product_id"]) for it in items) if oid is not None]
            products = {
                str(p["_id"]): serialize_doc(p)
                for p in self.db["products"].find({"_id": {"$in": product_ids}})
            }
        result = []
        for it in items:
            line = serialize_doc(it)
            line["product"] = products.get(it["product_id"])
            result.append(line)
        return result

    @staticmethod
    def total(items: List[dict]) -> float:
        return round(sum(
            float(it["product"]["price"]) * it["quantity"] for it in items if it["product"] is not None
        ), 2)

    def view(self, user_id: str) -> dict:
        items = self.get_items(user_id)
        total = self.total(items)
        return {
            "items": items,
            "count": len(items),
            "total": total,
            "total_display": format_rupiah(total),
        }

    def count(self, user_id: str) -> int:
        with store_errors("Failed to load cart"):
            return self.db["cart_items"].count_documents({"user_id": user_id})

    def add(self, user_id: str, product_id: str):
        # the stored id is canonical; hex case variants must land on the same row
        product_id = ProductService(self.db).get_product(product_id)["id"]
        stamp = now()
        query = {"user_id": user_id, "product_id": product_id}
        update = {"$inc": {"quantity": 1}, "$setOnInsert": {"created_at": stamp}, "$set": {"updated_at": stamp}}
        with store_errors("Failed to add to cart"):
            try:
                self.db["cart_items"].update_one(query, update, upsert=True)
            except DuplicateKeyError:
                # lost an insert race on (user, product); the row exists now
                self.db["cart_items"].update_one(query, update)

    def update_quantity(self, user_id: str, item_id: str, quantity: int):
        if quantity < 1:
            return
        oid = to_object_id(item_id)
        if oid is None:
            raise HTTPException(status_code=404, detail="Cart item not found")
        with store_errors("Failed to update cart"):
            result = self.db["cart_items"].update_one(
                {"_id": oid, "user_id": user_id},
                {"$set": {"quantity": quantity, "updated_at": now()}},
            )
        if result.matched_count == 0:
            raise HTTPException(status_code=404, detail="Cart item not found")

    def remove(self, user_id: str, item_id: str):
        oid = to_object_id(item_id)
        if oid is None:
            raise HTTPException(status_code=404, detail="Cart item not found")
        with store_errors("Failed to remove cart item"):
            result = self.db["cart_items"].delete_one({"_id": oid, "user_id": user_id})
        if result.deleted_count == 0:
            raise HTTPException(status_code=404, detail="Cart item not found")

    def clear(self, user_id: str):
        self.db["cart_items"].delete_many({"user_id": user_id})


class OrderService:
    def __init__(self, db, strict_status: bool = False):
        self.db = db
        self.strict_status = strict_status

    def checkout(self, user_id: str, shipping_address: str, phone: str, bank_name: str) -> dict:
        """
        Turn the user's cart into an order.

        The order row is written first, then its lines, then the cart is
        cleared. If a later step fails the lines already written are removed
        and the order is marked cancelled, so the cart stays the source of
        truth and the shopper can retry.
        """
        cart = CartService(self.db)
        items = cart.get_items(user_id)
        if not items:
            raise HTTPException(status_code=400, detail="Cart is empty")
        if any(it["product"] is None for it in items):
            raise HTTPException(status_code=400, detail="Some products in your cart are no longer available")

        order = Order(
            user_id=user_id,
            total_amount=cart.total(items),
            bank_name=bank_name,
            shipping_address=shipping_address,
            phone=phone,
        )
        with store_errors("Failed to create order"):
            order_id = create_document(self.db, "orders", order)

        stamp = now()
        try:
            lines = [
                OrderItem(
                    order_id=order_id,
                    product_id=it["product_id"],
                    quantity=it["quantity"],
                    price=float(it["product"]["price"]),
                ).model_dump()
                for it in items
            ]
            self.db["order_items"].insert_many([dict(line, created_at=stamp, updated_at=stamp) for line in lines])
            cart.clear(user_id)
        except (PyMongoError, ValidationError) as e:
            logger.warning(f"Checkout for order {order_id} failed after the order was written: {e}")
            self._compensate(order_id)
            raise HTTPException(status_code=503, detail="Failed to create order")

        logger.info(f"Order {order_id} created for user {user_id}, total {order.total_amount}")
        return self.get_order(order_id)

    def _compensate(self, order_id: str):
        try:
            self.db["order_items"].delete_many({"order_id": order_id})
            self.db["orders"].update_one(
                {"_id": to_object_id(order_id)},
                {"$set": {"status": "cancelled", "updated_at": now()}},
            )
        except PyMongoError:
            logger.error(f"Could not roll back order {order_id}; it needs manual cleanup", exc_info=True)

    def _decorate(self, doc: dict) -> dict:
        order = serialize_doc(doc)
        order["total_display"] = format_rupiah(order.get("total_amount", 0))
        return order

    def list_orders(self) -> List[dict]:
        with store_errors("Failed to load orders"):
            docs = get_documents(self.db, "orders", newest_first=True)
        return [self._decorate(d) for d in docs]

    def get_order(self, order_id: str) -> dict:
        oid = to_object_id(order_id)
        doc = None
        if oid is not None:
            with store_errors("Failed to load order"):
                doc = self.db["orders"].find_one({"_id": oid})
        if not doc:
            raise HTTPException(status_code=404, detail="Order not found")
        order = self._decorate(doc)
        with store_errors("Failed to load order"):
            lines = get_documents(self.db, "order_items", {"order_id": order["id"]})
        order["items"] = [serialize_doc(line) for line in lines]
        return order

    def update_status(self, order_id: str, status: str):
        oid = to_object_id(order_id)
        doc = None
        if oid is not None:
            with store_errors("Failed to update status"):
                doc = self.db["orders"].find_one({"_id": oid}, {"status": 1})
        if not doc:
            raise HTTPException(status_code=404, detail="Order not found")

        current = doc.get("status")
        if self.strict_status and status != current and status not in ORDER_STATUS_FLOW.get(current, set()):
            raise HTTPException(status_code=409, detail=f"Cannot change status from {current} to {status}")

        with store_errors("Failed to update status"):
            self.db["orders"].update_one({"_id": oid}, {"$set": {"status": status, "updated_at": now()}})
        logger.info(f"Order {order_id} status {current} -> {status}")

    def stats(self) -> dict:
        with store_errors("Failed to load dashboard"):
            total_orders = self.db["orders"].count_documents({})
            pending_orders = self.db["orders"].count_documents({"status": "pending"})
            revenue = sum(float(o.get("total_amount", 0)) for o in self.db["orders"].find({}, {"total_amount": 1}))
        return {
            "total_products": ProductService(self.db).count(),
            "total_orders": total_orders,
            "pending_orders": pending_orders,
            "total_revenue": revenue,
            "total_revenue_display": format_rupiah(revenue),
        }
