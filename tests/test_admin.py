from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from database import create_document
from services import OrderService

from conftest import make_product

FORM = {
    "name": "Bawang Merah",
    "description": "Bawang merah Brebes",
    "price": "38000.50",
    "image_url": "https://example.com/bawang.jpg",
    "category": "Bumbu",
    "stock": "75",
}


def make_order(db, user_id="u1", status="pending", total=13000, age_minutes=0):
    return create_document(db, "orders", {
        "user_id": user_id,
        "total_amount": total,
        "status": status,
        "payment_method": "bank_transfer",
        "bank_name": "BCA",
        "shipping_address": "Jl. Mawar",
        "phone": "0811",
        "created_at": datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
    })


def test_created_product_round_trips(client, admin):
    _, headers = admin
    response = client.post("/admin/products", json=FORM, headers=headers)
    assert response.status_code == 201
    body = response.json()
    assert len(body["products"]) == 1

    product = client.get(f"/products/{body['id']}").json()
    assert product["price"] == 38000.5
    assert product["stock"] == 75
    assert product["unit"] == "kg"
    assert product["name"] == "Bawang Merah"


def test_numeric_form_fields_accept_numbers(client, admin):
    _, headers = admin
    payload = dict(FORM, price=12000, stock=5, unit="ikat")
    product_id = client.post("/admin/products", json=payload, headers=headers).json()["id"]
    product = client.get(f"/products/{product_id}").json()
    assert (product["price"], product["stock"], product["unit"]) == (12000, 5, "ikat")


@pytest.mark.parametrize("field,value", [
    ("price", "murah"),
    ("price", "-1"),
    ("price", "NaN"),
    ("price", "1e400"),
    ("stock", "banyak"),
    ("stock", "2.5"),
    ("stock", "-3"),
    ("stock", "9" * 30),
])
def test_invalid_numbers_are_rejected(client, db, admin, field, value):
    _, headers = admin
    response = client.post("/admin/products", json=dict(FORM, **{field: value}), headers=headers)
    assert response.status_code == 422
    assert db["products"].count_documents({}) == 0


def test_edit_form_round_trip(client, db, admin):
    _, headers = admin
    product_id = make_product(db, name="Tomat", price=12000, stock=60)

    form = client.get(f"/admin/products/{product_id}/form", headers=headers).json()
    assert form["price"] == "12000"
    assert form["stock"] == "60"

    form["price"] = "13500"
    response = client.put(f"/admin/products/{product_id}", json=form, headers=headers)
    assert response.status_code == 200
    updated = next(p for p in response.json()["products"] if p["id"] == product_id)
    assert updated["price"] == 13500
    assert updated["stock"] == 60


def test_update_unknown_product(client, admin):
    _, headers = admin
    response = client.put("/admin/products/000000000000000000000000", json=FORM, headers=headers)
    assert response.status_code == 404


def test_delete_requires_confirmation(client, db, admin):
    _, headers = admin
    product_id = make_product(db)

    response = client.delete(f"/admin/products/{product_id}", headers=headers)
    assert response.status_code == 400
    assert db["products"].count_documents({}) == 1

    response = client.delete(f"/admin/products/{product_id}?confirm=true", headers=headers)
    assert response.status_code == 200
    assert response.json()["products"] == []
    assert db["products"].count_documents({}) == 0


def test_admin_product_list(client, db, admin):
    _, headers = admin
    make_product(db, name="Lama", age_minutes=10)
    make_product(db, name="Baru")
    names = [p["name"] for p in client.get("/admin/products", headers=headers).json()]
    assert names == ["Baru", "Lama"]


def test_orders_newest_first(client, db, admin):
    _, headers = admin
    old = make_order(db, age_minutes=30)
    new = make_order(db, total=5000)
    orders = client.get("/admin/orders", headers=headers).json()
    assert [o["id"] for o in orders] == [new, old]
    assert orders[0]["total_display"] == "Rp 5.000"


def test_status_change_touches_only_status(client, db, admin):
    _, headers = admin
    order_id = make_order(db)
    other_id = make_order(db, user_id="u2", age_minutes=5)
    before = {o["id"]: o for o in client.get("/admin/orders", headers=headers).json()}

    response = client.patch(f"/admin/orders/{order_id}/status", json={"status": "shipped"}, headers=headers)
    assert response.status_code == 200
    after = {o["id"]: o for o in response.json()["orders"]}

    assert after[order_id]["status"] == "shipped"
    ignored = {"status", "updated_at"}
    assert {k: v for k, v in after[order_id].items() if k not in ignored} == \
        {k: v for k, v in before[order_id].items() if k not in ignored}
    assert after[other_id] == before[other_id]


def test_status_must_be_known(client, db, admin):
    _, headers = admin
    order_id = make_order(db)
    response = client.patch(f"/admin/orders/{order_id}/status", json={"status": "lost"}, headers=headers)
    assert response.status_code == 422


def test_status_of_unknown_order(client, admin):
    _, headers = admin
    response = client.patch(
        "/admin/orders/000000000000000000000000/status", json={"status": "shipped"}, headers=headers
    )
    assert response.status_code == 404


def test_any_status_may_follow_any_other(db):
    order_id = make_order(db, status="delivered")
    OrderService(db).update_status(order_id, "pending")
    assert db["orders"].find_one()["status"] == "pending"


def test_strict_mode_is_forward_only(db):
    orders = OrderService(db, strict_status=True)
    order_id = make_order(db)

    orders.update_status(order_id, "shipped")
    with pytest.raises(HTTPException) as exc:
        orders.update_status(order_id, "processing")
    assert exc.value.status_code == 409

    orders.update_status(order_id, "cancelled")
    with pytest.raises(HTTPException):
        orders.update_status(order_id, "delivered")


def test_order_detail_includes_lines(client, db, admin):
    _, headers = admin
    order_id = make_order(db)
    create_document(db, "order_items", {"order_id": order_id, "product_id": "p1", "quantity": 2, "price": 5000})
    order = client.get(f"/admin/orders/{order_id}", headers=headers).json()
    assert order["items"][0]["quantity"] == 2


def test_dashboard_stats(client, db, admin):
    _, headers = admin
    make_product(db)
    make_order(db, total=13000)
    make_order(db, status="delivered", total=7000)

    stats = client.get("/admin/dashboard", headers=headers).json()
    assert stats == {
        "total_products": 1,
        "total_orders": 2,
        "pending_orders": 1,
        "total_revenue": 20000,
        "total_revenue_display": "Rp 20.000",
    }


def test_seed_only_fills_empty_catalog(client, db, admin):
    _, headers = admin
    first = client.post("/admin/seed", headers=headers).json()
    assert first["seeded"] is True
    count = db["products"].count_documents({})
    assert count == len(first["ids"])

    second = client.post("/admin/seed", headers=headers).json()
    assert second["seeded"] is False
    assert db["products"].count_documents({}) == count


def test_rejected_price_leaves_catalog_readable(client, db, admin):
    _, headers = admin
    response = client.post("/admin/products", json=dict(FORM, price="1e400"), headers=headers)
    assert response.status_code == 422
    assert client.get("/products").status_code == 200
    assert client.get("/").status_code == 200
