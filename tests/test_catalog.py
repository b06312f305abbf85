import mongomock
from pymongo.errors import PyMongoError

from conftest import make_product


def test_landing_shows_six_newest(client, db):
    for i in range(8):
        make_product(db, name=f"Produk {i}", age_minutes=i)

    response = client.get("/")
    assert response.status_code == 200
    body = response.json()
    assert [p["name"] for p in body["products"]] == [f"Produk {i}" for i in range(6)]
    assert body["cart_count"] == 0


def test_landing_counts_cart_lines(client, db, shopper):
    _, headers = shopper
    first = make_product(db, name="Tomat")
    second = make_product(db, name="Cabai")
    client.post("/cart", json={"product_id": first}, headers=headers)
    client.post("/cart", json={"product_id": second}, headers=headers)

    assert client.get("/", headers=headers).json()["cart_count"] == 2


def test_catalog_is_unbounded_and_newest_first(client, db):
    for i in range(9):
        make_product(db, name=f"Produk {i}", age_minutes=i)

    products = client.get("/products").json()
    assert len(products) == 9
    assert products[0]["name"] == "Produk 0"
    assert products[-1]["name"] == "Produk 8"
    assert "id" in products[0] and "_id" not in products[0]


def test_product_detail(client, db):
    product_id = make_product(db, name="Jagung Manis", price=8000)
    response = client.get(f"/products/{product_id}")
    assert response.status_code == 200
    assert response.json()["price"] == 8000


def test_product_detail_missing(client):
    assert client.get("/products/000000000000000000000000").status_code == 404
    assert client.get("/products/bukan-id").status_code == 404


def test_read_failure_is_reported(client, db, monkeypatch):
    make_product(db)

    def broken_find(self, *args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(mongomock.collection.Collection, "find", broken_find)
    response = client.get("/products")
    assert response.status_code == 503
    assert response.json()["detail"] == "Failed to load products"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"
