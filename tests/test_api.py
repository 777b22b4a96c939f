import pytest
from fastapi.testclient import TestClient

from api.main import create_app


@pytest.fixture
def client(store, notifier):
    with TestClient(create_app(store=store, notifier=notifier, seed_records=[])) as client:
        yield client


def add(client, name, price=None):
    response = client.post("/products", json={"name": name, "price": price})
    assert response.status_code == 201
    return response.json()


def test_root_and_status(client):
    assert "endpoints" in client.get("/").json()
    status = client.get("/status").json()
    assert status["ready"] is True
    assert status["load_error"] is None


def test_add_and_list_products(client):
    tea = add(client, "Tea", "5,000")
    add(client, "Coffee")
    assert tea["price"] == 5000
    assert tea["is_review_requested"] is False

    products = client.get("/products").json()
    assert [p["name"] for p in products] == ["Coffee", "Tea"]
    assert products[0]["price"] is None
    assert [p["name"] for p in client.get("/products", params={"search": "Te"}).json()] == ["Tea"]


def test_invalid_product_is_a_bad_request(client):
    assert client.post("/products", json={"name": "  ", "price": "1"}).status_code == 400
    assert client.post("/products", json={"price": "1"}).status_code == 422


def test_bulk_import(client):
    response = client.post("/products/import", json={"text": "سكر 10 كيلو 31000\nعدسية ملوة\n\n"})
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    prices = {p["name"]: p["price"] for p in body["products"]}
    assert prices == {"سكر 10 كيلو": 31000, "عدسية ملوة": None}
    assert client.post("/products/import", json={"text": "\n  \n"}).status_code == 400


def test_review_flow(client, notifier):
    tea = add(client, "Tea", "5,000")

    response = client.post("/reviews", json={"product_ids": [tea["id"]], "batch_id": "BATCH-42"})
    assert response.json() == {"batch_id": "BATCH-42", "count": 1}
    pending = client.get("/reviews/pending").json()
    assert pending["count"] == 1
    assert pending["products"][0]["review_batch_id"] == "BATCH-42"

    updated = client.put(f"/products/{tea['id']}/price", json={"price": "5,500"}).json()
    assert updated["price"] == 5500
    assert updated["is_review_requested"] is False
    assert updated["review_batch_id"] is None
    assert client.get("/reviews/pending").json()["count"] == 0

    history = client.get("/history", params={"product_id": tea["id"]}).json()
    assert [(h["product_name"], h["price"]) for h in history] == [("Tea", 5500)]


def test_complete_review_without_price_change(client):
    tea = add(client, "Tea", "5,000")
    client.post("/reviews", json={"product_ids": [tea["id"]]})
    assert client.delete(f"/reviews/{tea['id']}").status_code == 200
    assert client.get("/reviews/pending").json()["count"] == 0
    assert client.delete("/reviews/unknown").status_code == 404


def test_price_update_errors(client):
    tea = add(client, "Tea", "5,000")
    assert client.put(f"/products/{tea['id']}/price", json={"price": "abc"}).status_code == 400
    assert client.put("/products/unknown/price", json={"price": "1"}).status_code == 404


def test_delete_needs_confirmation_and_keeps_history(client):
    tea = add(client, "Tea", "5,000")
    assert client.delete("/products", params={"ids": [tea["id"]]}).status_code == 400
    response = client.delete("/products", params={"ids": [tea["id"]], "confirm": True})
    assert response.json() == {"deleted": 1}
    assert client.get("/products").json() == []
    history = client.get("/history").json()
    assert [(h["product_name"], h["price"]) for h in history] == [("منتج محذوف", 5000)]


def test_admin_routes_can_be_gated(store):
    app = create_app(store=store, seed_records=[], admin_check=lambda request: False)
    with TestClient(app) as client:
        assert client.post("/reviews", json={"product_ids": ["x"]}).status_code == 403
        assert client.post("/products/import", json={"text": "Tea 1"}).status_code == 403
        assert client.get("/products").status_code == 200


ORDER = {
    "name": "Ahmed",
    "items": [{"product_id": "tea", "name": "Tea", "original_price": 1000, "quantity": 2}],
    "profit_margin": 10,
    "delivery_cost": 300,
}


def test_quote(client):
    quote = client.post("/orders/quote", json=ORDER).json()
    assert quote["sub_total"] == pytest.approx(2200)
    assert quote["grand_total"] == pytest.approx(2500)
    assert "Tea × 2 = 2,200" in quote["receipt"]
    assert "رقم الطلب: Ahmed" in quote["receipt"]


def test_order_lifecycle(client):
    created = client.post("/orders", json=ORDER)
    assert created.status_code == 201
    order = created.json()
    assert order["total_price"] == pytest.approx(2500)

    changed = dict(ORDER, name=None, delivery_cost="0")
    updated = client.put(f"/orders/{order['id']}", json=changed).json()
    assert updated["id"] == order["id"]
    assert updated["name"] == "Ahmed"
    assert updated["total_price"] == pytest.approx(2200)

    assert [o["id"] for o in client.get("/orders").json()] == [order["id"]]
    assert client.delete(f"/orders/{order['id']}").status_code == 400
    assert client.delete(f"/orders/{order['id']}", params={"confirm": True}).json() == {"deleted": 1}
    assert client.get(f"/orders/{order['id']}").status_code == 404


def test_empty_order_is_rejected(client):
    assert client.post("/orders", json=dict(ORDER, items=[])).status_code == 422


def test_missing_tables_then_setup(bare_store):
    with TestClient(create_app(store=bare_store, seed_records=[])) as client:
        status = client.get("/status").json()
        assert status["ready"] is False
        assert status["load_error"] == "TABLE_MISSING"
        assert client.get("/products").status_code == 503

        assert client.post("/setup").json() == {"ready": True}
        assert client.get("/products").json() == []


def test_review_count_reflects_flagged_products(client):
    tea = add(client, "Tea", "5,000")
    response = client.post("/reviews", json={"product_ids": [tea["id"], "unknown", tea["id"]], "batch_id": "BATCH-5"})
    assert response.status_code == 200
    assert response.json() == {"batch_id": "BATCH-5", "count": 1}
