from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from office_lunch.main import app, get_export_task
from office_lunch.services.analysis import MockMenuAnalyzer, get_server_analyzer
from office_lunch.services.ingestion import MenuIngestionPipeline, get_ingestion_pipeline
from office_lunch.services.ledger import get_engine
from tests.conftest import make_image

ADMIN = {"X-User-Name": "Admin", "X-Admin-Code": "8888"}
ALICE = {"X-User-Name": "Alice"}
BOB = {"X-User-Name": "Bob"}


class FakeTask:
    def __init__(self) -> None:
        self.payloads = []

    def delay(self, payload: dict) -> SimpleNamespace:
        self.payloads.append(payload)
        return SimpleNamespace(id="task-1")


@pytest.fixture
def export_task() -> FakeTask:
    return FakeTask()


@pytest.fixture
def client(engine, export_task):
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_ingestion_pipeline] = lambda: MenuIngestionPipeline(MockMenuAnalyzer())
    app.dependency_overrides[get_server_analyzer] = lambda: MockMenuAnalyzer()
    app.dependency_overrides[get_export_task] = lambda: export_task
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_item(client: TestClient, name: str, price: int) -> dict:
    response = client.post("/api/menu/items", json={"name": name, "price": price}, headers=ADMIN)
    assert response.status_code == 201
    return response.json()


def login(client: TestClient, name: str) -> dict:
    response = client.post("/api/session", json={"name": name})
    assert response.status_code == 200
    return response.json()["user"]


# =============================================================================
# ROOT, HEALTH, SESSION
# =============================================================================

def test_root(client) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["health"] == "/health"


def test_health(client) -> None:
    data = client.get("/health").json()
    assert data["store"] == "healthy"
    assert data["details"]["store_provider"] == "memory"


def test_login_resolves_name_collisions(client) -> None:
    assert login(client, "  alice ")["name"] == "alice"
    assert login(client, "ALICE")["name"] == "alice"

    users = client.get("/api/users").json()["users"]
    assert [u["name"] for u in users] == ["alice"]


def test_blank_login_is_rejected(client) -> None:
    response = client.post("/api/session", json={"name": "   "})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_admin_verify(client) -> None:
    assert client.post("/api/admin/verify", json={"passcode": "8888"}).status_code == 200

    response = client.post("/api/admin/verify", json={"passcode": "0000"})
    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "error": "authorization_error",
        "detail": "incorrect code",
    }


def test_wrong_admin_header_is_rejected(client) -> None:
    response = client.post(
        "/api/menu/items",
        json={"name": "Soup", "price": 40},
        headers={"X-User-Name": "Mallory", "X-Admin-Code": "1234"},
    )
    assert response.status_code == 403


# =============================================================================
# MENU
# =============================================================================

def test_menu_edits_and_search(client) -> None:
    add_item(client, "Fried Rice", 90)
    add_item(client, "Beef Noodle Soup", 150)

    response = client.get("/api/menu", params={"search": "rice"})
    assert [i["name"] for i in response.json()["items"]] == ["Fried Rice"]

    response = client.post("/api/menu/items", json={"name": "Tea", "price": 20}, headers=ALICE)
    assert response.status_code == 403


def test_restaurant_and_deadline_updates(client) -> None:
    response = client.patch(
        "/api/menu/restaurant",
        json={"name": "Corner Noodle House", "phone": "02-1234"},
        headers=ADMIN,
    )
    assert response.json() == {"name": "Corner Noodle House", "phone": "02-1234", "address": ""}

    response = client.put("/api/menu/deadline", json={"order_deadline": "11:30"}, headers=ADMIN)
    assert response.json()["order_deadline"] == "11:30"
    assert response.json()["is_closed"] is True

    response = client.put("/api/menu/deadline", json={"order_deadline": "noon"}, headers=ADMIN)
    assert response.status_code == 400


def test_remove_menu_item(client) -> None:
    item = add_item(client, "Fried Rice", 90)

    assert client.delete(f"/api/menu/items/{item['id']}", headers=ADMIN).status_code == 200
    assert client.get("/api/menu").json()["items"] == []


def test_menu_photo_upload_replaces_items_and_keeps_deadline(client) -> None:
    add_item(client, "Old Item", 10)
    client.put("/api/menu/deadline", json={"order_deadline": "13:00"}, headers=ADMIN)

    response = client.post(
        "/api/menu/image",
        files={"file": ("menu.png", make_image(1600, 1200), "image/png")},
        headers=ADMIN,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["restaurant"]["name"] == "Corner Noodle House"
    assert len(data["items"]) == 4
    assert data["order_deadline"] == "13:00"
    assert data["image_url"].startswith("data:image/jpeg;base64,")
    assert data["provider"] == "mock"


def test_menu_photo_upload_without_analysis_path(client) -> None:
    add_item(client, "Old Item", 10)
    app.dependency_overrides[get_ingestion_pipeline] = lambda: MenuIngestionPipeline(
        MockMenuAnalyzer(unreachable=True)
    )

    response = client.post(
        "/api/menu/image",
        files={"file": ("menu.png", make_image(200, 200), "image/png")},
        headers=ADMIN,
    )

    assert response.status_code == 502
    assert "no analysis path" in response.json()["detail"]
    assert [i["name"] for i in client.get("/api/menu").json()["items"]] == ["Old Item"]


def test_menu_photo_upload_requires_admin(client) -> None:
    response = client.post(
        "/api/menu/image",
        files={"file": ("menu.png", make_image(200, 200), "image/png")},
        headers=ALICE,
    )
    assert response.status_code == 403


# =============================================================================
# ORDERS & LEDGER
# =============================================================================

def test_order_lifecycle(client) -> None:
    item = add_item(client, "Bento", 100)
    login(client, "Alice")

    response = client.post(
        "/api/orders", json={"item_id": item["id"], "quantity": 3, "note": "no rice"}, headers=ALICE
    )
    assert response.status_code == 201
    order = response.json()
    assert order["price"] == 300

    users = client.get("/api/users").json()
    assert users["users"][0]["balance"] == 300
    assert users["total_debt"] == 300

    today = client.get("/api/orders/today").json()
    assert today["total"] == 1
    assert today["grand_total"] == 300

    history = client.get("/api/orders/history", headers=ALICE).json()
    assert history[0]["total"] == 300
    assert history[0]["date"] == "10/19 (Mon)"

    assert client.delete(f"/api/orders/{order['id']}", headers=BOB).status_code == 403
    assert client.delete(f"/api/orders/{order['id']}", headers=ALICE).status_code == 200
    assert client.get("/api/users").json()["total_debt"] == 0


def test_header_name_in_any_case_acts_as_the_logged_in_user(client) -> None:
    item = add_item(client, "Bento", 100)
    login(client, "Alice")
    lower = {"X-User-Name": "alice"}

    response = client.post("/api/orders", json={"item_id": item["id"]}, headers=lower)
    assert response.status_code == 201
    assert response.json()["user_name"] == "Alice"
    assert client.get("/api/users").json()["users"][0]["balance"] == 100

    response = client.delete(f"/api/orders/{response.json()['id']}", headers=lower)
    assert response.status_code == 200
    assert client.get("/api/users").json()["total_debt"] == 0


def test_order_from_unknown_user_is_rejected(client) -> None:
    item = add_item(client, "Bento", 100)

    response = client.post("/api/orders", json={"item_id": item["id"]}, headers={"X-User-Name": "Ghost"})

    assert response.status_code == 400
    assert client.get("/api/orders/today").json()["total"] == 0


def test_order_requires_user_header(client) -> None:
    item = add_item(client, "Bento", 100)
    response = client.post("/api/orders", json={"item_id": item["id"]})
    assert response.status_code == 400


def test_order_with_bad_quantity(client) -> None:
    item = add_item(client, "Bento", 100)
    login(client, "Alice")

    response = client.post("/api/orders", json={"item_id": item["id"], "quantity": 0}, headers=ALICE)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_order_after_deadline(client) -> None:
    item = add_item(client, "Bento", 100)
    client.put("/api/menu/deadline", json={"order_deadline": "11:00"}, headers=ADMIN)
    login(client, "Alice")
    login(client, "Admin")

    response = client.post("/api/orders", json={"item_id": item["id"]}, headers=ALICE)
    assert response.status_code == 409
    assert response.json()["error"] == "ordering_closed"

    response = client.post("/api/orders", json={"item_id": item["id"]}, headers=ADMIN)
    assert response.status_code == 201


def test_order_store_failure(client, store) -> None:
    item = add_item(client, "Bento", 100)
    login(client, "Alice")
    store.fail_next("increment")

    response = client.post("/api/orders", json={"item_id": item["id"]}, headers=ALICE)

    assert response.status_code == 503
    assert client.get("/api/orders/today").json()["total"] == 0


def test_settle_debt(client) -> None:
    item = add_item(client, "Bento", 100)
    login(client, "Alice")
    client.post("/api/orders", json={"item_id": item["id"], "quantity": 2}, headers=ALICE)

    response = client.post("/api/users/Alice/settle", json={"amount": 50}, headers=ADMIN)
    assert response.json()["balance"] == 150

    response = client.post("/api/users/Alice/settle", headers=ADMIN)
    assert response.json()["amount"] == 150
    assert response.json()["balance"] == 0

    assert client.post("/api/users/Alice/settle", headers=ALICE).status_code == 403

    response = client.post("/api/users/alice/settle", json={"amount": 20}, headers=ADMIN)
    assert response.json()["user_name"] == "Alice"
    assert response.json()["balance"] == -20


def test_daily_export_is_queued(client, export_task) -> None:
    item = add_item(client, "Bento", 100)
    login(client, "Alice")
    client.post("/api/orders", json={"item_id": item["id"]}, headers=ALICE)

    response = client.post("/api/exports/daily", headers=ADMIN)

    assert response.status_code == 202
    assert response.json()["task_id"] == "task-1"
    payload = export_task.payloads[0]
    assert payload["orders"][0]["itemName"] == "Bento"
    assert isinstance(payload["orders"][0]["createdAt"], str)
    assert payload["users"][0]["name"] == "Alice"


# =============================================================================
# MENU ANALYSIS ENDPOINT
# =============================================================================

def test_analyze_menu(client) -> None:
    response = client.post("/api/analyze-menu", json={"image": "QUJD"})
    assert response.status_code == 200
    assert response.json()["restaurant"]["name"] == "Corner Noodle House"


def test_analyze_menu_without_image(client) -> None:
    response = client.post("/api/analyze-menu", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "No image provided"}


def test_analyze_menu_without_server_key(client) -> None:
    app.dependency_overrides[get_server_analyzer] = lambda: None

    response = client.post("/api/analyze-menu", json={"image": "QUJD"})

    assert response.status_code == 500
    assert response.json() == {"error": "Server configuration error"}


def test_analyze_menu_upstream_failure(client) -> None:
    app.dependency_overrides[get_server_analyzer] = lambda: MockMenuAnalyzer(response_text="nope")

    response = client.post("/api/analyze-menu", json={"image": "QUJD"})

    assert response.status_code == 500
    assert "not valid JSON" in response.json()["error"]
