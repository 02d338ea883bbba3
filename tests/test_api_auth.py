from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from spadesk.auth_api import router as auth_router
from spadesk.authn import create_user
from spadesk.db import Base, get_db
from spadesk.errors import install_error_handlers
from spadesk.models import User


def make_client(tmp_path):
    db_path = tmp_path / "test_spadesk_auth.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    testing_session_local = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    app = FastAPI()
    app.state.session_local = testing_session_local
    install_error_handlers(app)
    app.include_router(auth_router)

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


def _seed_user(client, email="admin@spadesk.local", role="admin", password="Secret123"):
    with client.testing_session_local() as db:
        user = create_user(
            db,
            first_name="Esi",
            last_name="Owusu",
            email=email,
            password=password,
            role=role,
        )
        return user.id


def _login(client, email="admin@spadesk.local", password="Secret123"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def _auth_headers(client, email="admin@spadesk.local", password="Secret123") -> dict:
    res = _login(client, email, password)
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['token']}"}


def test_login_returns_token_and_records_last_login(tmp_path):
    client = make_client(tmp_path)
    user_id = _seed_user(client)

    res = _login(client)
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Login successful"
    assert body["token"]
    assert body["expires_in_seconds"] == 24 * 3600
    assert body["user"]["role"] == "admin"
    assert "password_hash" not in body["user"]

    with client.testing_session_local() as db:
        user = db.get(User, user_id)
        assert user.last_login is not None


def test_login_rejects_bad_password_and_unknown_email(tmp_path):
    client = make_client(tmp_path)
    _seed_user(client)

    wrong = _login(client, password="Wrong1234")
    assert wrong.status_code == 401
    assert wrong.json() == {"message": "Invalid email or password", "error": "authentication_required"}

    unknown = _login(client, email="ghost@spadesk.local")
    assert unknown.status_code == 401


def test_deactivated_user_cannot_log_in(tmp_path):
    client = make_client(tmp_path)
    _seed_user(client)
    staff_id = _seed_user(client, email="staff@spadesk.local", role="staff")
    headers = _auth_headers(client)

    res = client.patch(f"/api/auth/users/{staff_id}/status", json={"is_active": False}, headers=headers)
    assert res.status_code == 200
    assert res.json()["user"]["is_active"] is False

    blocked = _login(client, email="staff@spadesk.local")
    assert blocked.status_code == 403
    assert blocked.json()["message"] == "Account is deactivated. Please contact administrator."


def test_me_requires_token(tmp_path):
    client = make_client(tmp_path)
    _seed_user(client)

    missing = client.get("/api/auth/me")
    assert missing.status_code == 401
    assert missing.json()["message"] == "Access denied. No token provided."

    garbage = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
    assert garbage.json()["message"] == "Invalid or expired token."

    me = client.get("/api/auth/me", headers=_auth_headers(client))
    assert me.status_code == 200
    assert me.json()["email"] == "admin@spadesk.local"


def test_register_is_admin_only_and_rejects_duplicate_email(tmp_path):
    client = make_client(tmp_path)
    _seed_user(client)
    _seed_user(client, email="desk@spadesk.local", role="receptionist")
    admin_headers = _auth_headers(client)
    desk_headers = _auth_headers(client, email="desk@spadesk.local")

    payload = {
        "first_name": "Kofi",
        "last_name": "Boateng",
        "email": "kofi@spadesk.local",
        "password": "Stylist99",
        "role": "staff",
        "position": "Stylist",
    }
    denied = client.post("/api/auth/register", json=payload, headers=desk_headers)
    assert denied.status_code == 403
    assert denied.json()["message"] == "Access denied. Admin privileges required."

    created = client.post("/api/auth/register", json=payload, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["user"]["position"] == "Stylist"

    duplicate = client.post("/api/auth/register", json=payload, headers=admin_headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "User with this email already exists"

    users = client.get("/api/auth/users", headers=admin_headers)
    assert users.status_code == 200
    assert {u["email"] for u in users.json()} == {
        "admin@spadesk.local",
        "desk@spadesk.local",
        "kofi@spadesk.local",
    }


def test_register_enforces_password_policy(tmp_path):
    client = make_client(tmp_path)
    _seed_user(client)
    res = client.post(
        "/api/auth/register",
        json={
            "first_name": "Weak",
            "last_name": "Password",
            "email": "weak@spadesk.local",
            "password": "onlyletters",
        },
        headers=_auth_headers(client),
    )
    assert res.status_code == 400
    assert res.json()["error"] == "invalid_input"


def test_change_password(tmp_path):
    client = make_client(tmp_path)
    _seed_user(client)
    headers = _auth_headers(client)

    wrong = client.put(
        "/api/auth/change-password",
        json={"current_password": "Nope12345", "new_password": "Fresh2026"},
        headers=headers,
    )
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Current password is incorrect"

    ok = client.put(
        "/api/auth/change-password",
        json={"current_password": "Secret123", "new_password": "Fresh2026"},
        headers=headers,
    )
    assert ok.status_code == 200

    assert _login(client).status_code == 401
    assert _login(client, password="Fresh2026").status_code == 200

    with client.testing_session_local() as db:
        rows = db.execute(select(User)).scalars().all()
        assert len(rows) == 1
