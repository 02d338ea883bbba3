from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from spadesk.api import clients_router, services_router, visits_router
from spadesk.auth_api import router as auth_router
from spadesk.authn import create_user
from spadesk.db import Base, get_db
from spadesk.errors import install_error_handlers


def make_client(tmp_path):
    db_path = tmp_path / "test_spadesk_services.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    testing_session_local = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    app = FastAPI()
    app.state.session_local = testing_session_local
    install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(clients_router)
    app.include_router(services_router)
    app.include_router(visits_router)

    def override_get_db():
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    client.testing_session_local = testing_session_local
    return client


def _headers(client, role: str) -> dict:
    email = f"{role}@spadesk.local"
    with client.testing_session_local() as db:
        create_user(db, first_name=role.title(), last_name="User", email=email, password="Secret123", role=role)
    login = client.post("/api/auth/login", json={"email": email, "password": "Secret123"})
    return {"Authorization": f"Bearer {login.json()['token']}"}


def _new_service(client, headers, **overrides):
    payload = {"name": "Deep Tissue Massage", "category": "massage", "duration": 60, "price": 250}
    payload.update(overrides)
    return client.post("/api/services", json=payload, headers=headers)


def test_create_service_defaults_points_from_price(tmp_path):
    client = make_client(tmp_path)
    admin = _headers(client, "admin")

    res = _new_service(client, admin, price=125)
    assert res.status_code == 201
    service = res.json()["service"]
    assert service["loyalty_points_earned"] == 12
    assert service["is_active"] is True

    explicit = _new_service(client, admin, name="Gel Manicure", category="nails", price=90, loyalty_points_earned=20)
    assert explicit.json()["service"]["loyalty_points_earned"] == 20


def test_service_writes_are_admin_only(tmp_path):
    client = make_client(tmp_path)
    desk = _headers(client, "receptionist")
    admin = _headers(client, "admin")

    assert _new_service(client, desk).status_code == 403
    created = _new_service(client, admin).json()["service"]
    assert client.put(f"/api/services/{created['id']}", json={"price": 300}, headers=desk).status_code == 403
    assert client.get(f"/api/services/{created['id']}", headers=desk).status_code == 200


def test_duplicate_service_names_conflict(tmp_path):
    client = make_client(tmp_path)
    admin = _headers(client, "admin")
    first = _new_service(client, admin).json()["service"]
    dup = _new_service(client, admin)
    assert dup.status_code == 409
    assert dup.json()["message"] == "Service with this name already exists"

    other = _new_service(client, admin, name="Hot Stone").json()["service"]
    rename = client.put(f"/api/services/{other['id']}", json={"name": first["name"]}, headers=admin)
    assert rename.status_code == 409
    assert rename.json()["message"] == "Another service with this name already exists"


def test_blank_service_names_are_rejected(tmp_path):
    client = make_client(tmp_path)
    admin = _headers(client, "admin")
    first = _new_service(client, admin).json()["service"]
    second = _new_service(client, admin, name="Hot Stone").json()["service"]

    for service in (first, second):
        res = client.put(f"/api/services/{service['id']}", json={"name": "   "}, headers=admin)
        assert res.status_code == 400
        assert res.json() == {"message": "name is required", "error": "invalid_input"}

    blank = _new_service(client, admin, name="    ")
    assert blank.status_code == 400
    assert client.get(f"/api/services/{first['id']}", headers=admin).json()["name"] == "Deep Tissue Massage"


def test_list_filters_and_categories(tmp_path):
    client = make_client(tmp_path)
    admin = _headers(client, "admin")
    _new_service(client, admin)
    braids = _new_service(client, admin, name="Box Braids", category="hair", duration=240, price=400).json()["service"]
    _new_service(client, admin, name="Express Facial", category="facial", duration=30, price=150)

    off = client.patch(f"/api/services/{braids['id']}/status", json={"is_active": False}, headers=admin)
    assert off.status_code == 200
    assert off.json()["message"] == "Service deactivated successfully"

    active = client.get("/api/services", params={"is_active": True}, headers=admin).json()
    assert {s["name"] for s in active} == {"Deep Tissue Massage", "Express Facial"}

    hair = client.get("/api/services", params={"category": "hair"}, headers=admin).json()
    assert [s["name"] for s in hair] == ["Box Braids"]

    by_price = client.get("/api/services", params={"sort_by": "price", "sort_order": "desc"}, headers=admin).json()
    assert [s["name"] for s in by_price] == ["Box Braids", "Deep Tissue Massage", "Express Facial"]

    categories = client.get("/api/services/categories/list", headers=admin)
    assert categories.json() == ["facial", "hair", "massage"]


def test_service_stats_use_recorded_prices(tmp_path):
    client = make_client(tmp_path)
    admin = _headers(client, "admin")
    service = _new_service(client, admin, price=200).json()["service"]
    guest = client.post(
        "/api/clients",
        json={"first_name": "Efua", "last_name": "Addo", "phone": "0205556666"},
        headers=admin,
    ).json()["client"]

    for day, price in (("2026-03-01T10:00:00", None), ("2026-03-01T15:00:00", 150), ("2026-03-02T11:00:00", None)):
        item = {"service_id": service["id"]}
        if price is not None:
            item["price"] = price
        res = client.post(
            "/api/visits",
            json={"client_id": guest["id"], "services": [item], "payment_method": "mobile_money", "date": day},
            headers=admin,
        )
        assert res.status_code == 201

    stats = client.get(
        f"/api/services/{service['id']}/stats",
        params={"start_date": "2026-03-01", "end_date": "2026-03-02"},
        headers=admin,
    )
    assert stats.status_code == 200
    body = stats.json()["stats"]
    assert body["total_usage"] == 3
    assert body["total_revenue"] == 550
    assert body["average_revenue"] == round(550 / 3, 2)
    assert body["daily_usage"] == {"2026-03-01": 2, "2026-03-02": 1}

    bad = client.get(f"/api/services/{service['id']}/stats", params={"start_date": "yesterday"}, headers=admin)
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid date format"
