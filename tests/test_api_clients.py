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
    db_path = tmp_path / "test_spadesk_clients.db"
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
    assert login.status_code == 200
    return {"Authorization": f"Bearer {login.json()['token']}"}


def _new_client(client, headers, **overrides):
    payload = {
        "first_name": "Abena",
        "last_name": "Asante",
        "phone": "0241112222",
        "email": "abena@example.com",
        "gender": "female",
        "address": {"street": "12 Ring Road", "city": "Accra"},
        "marketing_consent": True,
    }
    payload.update(overrides)
    return client.post("/api/clients", json=payload, headers=headers)


def test_clients_require_authentication(tmp_path):
    client = make_client(tmp_path)
    res = client.get("/api/clients")
    assert res.status_code == 401


def test_create_client_starts_with_zeroed_ledger(tmp_path):
    client = make_client(tmp_path)
    headers = _headers(client, "receptionist")

    res = _new_client(client, headers)
    assert res.status_code == 201
    body = res.json()
    assert body["message"] == "Client created successfully"
    created = body["client"]
    assert created["visit_count"] == 0
    assert created["total_spent"] == 0
    assert created["loyalty_points"] == 0
    assert created["membership_level"] == "standard"
    assert created["address"]["city"] == "Accra"
    assert created["full_name"] == "Abena Asante"


def test_duplicate_phone_is_a_conflict(tmp_path):
    client = make_client(tmp_path)
    headers = _headers(client, "receptionist")
    assert _new_client(client, headers).status_code == 201

    dup = _new_client(client, headers, first_name="Other")
    assert dup.status_code == 409
    assert dup.json()["message"] == "Client with this phone number already exists"

    second = _new_client(client, headers, phone="0243334444").json()["client"]
    clash = client.put(f"/api/clients/{second['id']}", json={"phone": "0241112222"}, headers=headers)
    assert clash.status_code == 409


def test_list_search_and_pagination(tmp_path):
    client = make_client(tmp_path)
    headers = _headers(client, "receptionist")
    names = [("Abena", "Asante"), ("Kwame", "Mensah"), ("Akua", "Mensah"), ("Yaw", "Owusu")]
    for idx, (first, last) in enumerate(names):
        assert _new_client(client, headers, first_name=first, last_name=last, phone=f"02400000{idx:02d}").status_code == 201

    page = client.get("/api/clients", params={"limit": 2, "page": 1}, headers=headers)
    assert page.status_code == 200
    body = page.json()
    assert body["total_clients"] == 4
    assert body["total_pages"] == 2
    assert body["current_page"] == 1
    assert [c["last_name"] for c in body["clients"]] == ["Asante", "Mensah"]

    filtered = client.get("/api/clients", params={"search": "mensah"}, headers=headers)
    assert filtered.json()["total_clients"] == 2

    quick = client.get("/api/clients/search/kwa", headers=headers)
    assert quick.status_code == 200
    assert [c["first_name"] for c in quick.json()] == ["Kwame"]


def test_update_client_keeps_unsent_fields(tmp_path):
    client = make_client(tmp_path)
    headers = _headers(client, "receptionist")
    created = _new_client(client, headers).json()["client"]

    res = client.put(f"/api/clients/{created['id']}", json={"notes": "Prefers mornings"}, headers=headers)
    assert res.status_code == 200
    updated = res.json()["client"]
    assert updated["notes"] == "Prefers mornings"
    assert updated["phone"] == "0241112222"
    assert updated["address"]["street"] == "12 Ring Road"

    missing = client.put("/api/clients/999", json={"notes": "x"}, headers=headers)
    assert missing.status_code == 404


def test_blank_client_names_are_rejected(tmp_path):
    client = make_client(tmp_path)
    headers = _headers(client, "receptionist")
    created = _new_client(client, headers).json()["client"]

    res = client.put(f"/api/clients/{created['id']}", json={"last_name": "  "}, headers=headers)
    assert res.status_code == 400
    assert res.json() == {"message": "last_name is required", "error": "invalid_input"}

    trimmed = client.put(f"/api/clients/{created['id']}", json={"first_name": "  Efua "}, headers=headers)
    assert trimmed.json()["client"]["first_name"] == "Efua"
    assert trimmed.json()["client"]["last_name"] == "Asante"

    blank = _new_client(client, headers, phone="0240000000", first_name=" ")
    assert blank.status_code == 400


def test_loyalty_routes_are_admin_only(tmp_path):
    client = make_client(tmp_path)
    desk = _headers(client, "receptionist")
    admin = _headers(client, "admin")
    created = _new_client(client, desk).json()["client"]

    denied = client.patch(f"/api/clients/{created['id']}/loyalty", json={"points": 50}, headers=desk)
    assert denied.status_code == 403

    absolute = client.patch(f"/api/clients/{created['id']}/loyalty", json={"points": 50}, headers=admin)
    assert absolute.status_code == 200
    assert absolute.json()["client"]["loyalty_points"] == 50

    adjusted = client.patch(
        f"/api/clients/{created['id']}/loyalty",
        json={"points": -80, "adjustment": True},
        headers=admin,
    )
    assert adjusted.json()["client"]["loyalty_points"] == 0

    client.patch(f"/api/clients/{created['id']}/loyalty", json={"points": 30}, headers=admin)
    listed = client.get("/api/clients/loyalty/list", params={"min_points": 20}, headers=admin)
    assert listed.status_code == 200
    assert [c["id"] for c in listed.json()] == [created["id"]]
    assert client.get("/api/clients/loyalty/list", headers=desk).status_code == 403


def test_delete_client_with_visits_is_refused(tmp_path):
    client = make_client(tmp_path)
    admin = _headers(client, "admin")
    keeper = _new_client(client, admin).json()["client"]
    loner = _new_client(client, admin, phone="0249990000").json()["client"]

    service = client.post(
        "/api/services",
        json={"name": "Wash and Set", "category": "hair", "duration": 45, "price": 80},
        headers=admin,
    ).json()["service"]
    visit = client.post(
        "/api/visits",
        json={"client_id": keeper["id"], "services": [{"service_id": service["id"]}], "payment_method": "cash"},
        headers=admin,
    )
    assert visit.status_code == 201

    refused = client.delete(f"/api/clients/{keeper['id']}", headers=admin)
    assert refused.status_code == 400
    assert refused.json()["message"] == "Cannot delete client with visit history. Consider archiving instead."

    detail = client.get(f"/api/clients/{keeper['id']}", headers=admin)
    assert detail.status_code == 200
    assert len(detail.json()["visits"]) == 1

    removed = client.delete(f"/api/clients/{loner['id']}", headers=admin)
    assert removed.status_code == 200
    assert client.get(f"/api/clients/{loner['id']}", headers=admin).status_code == 404
