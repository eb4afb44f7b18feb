import re

import pytest

from app.fleet.modules.users.service import validate_password


@pytest.fixture()
def roles(client, login):
    login(client)
    r = client.get("/api/admin/roles")
    assert r.status_code == 200
    return {role["key"]: role for role in r.json["roles"]}


def _new_user(roles, **overrides):
    payload = {
        "username": "jsmith",
        "email": "JSmith@Example.com",
        "first_name": "Jo",
        "last_name": "Smith",
        "role_id": roles["viewer"]["id"],
        "password": "Secret123",
        "confirm_password": "Secret123",
    }
    payload.update(overrides)
    return payload


def test_password_rules():
    assert validate_password("Secret123") == []
    errors = validate_password("short", "other")
    assert "Password must be at least 8 characters." in errors
    assert "Password must contain an uppercase letter." in errors
    assert "Password must contain a number." in errors
    assert "Passwords do not match." in errors


def test_roles_list(roles):
    assert set(roles) == {"admin", "manager", "inspector", "viewer"}
    assert "users.edit" in roles["admin"]["permissions"]
    assert "users.edit" not in roles["manager"]["permissions"]
    assert "admin.view" not in roles["viewer"]["permissions"]
    assert "profile.edit" in roles["inspector"]["permissions"]


def test_create_user_with_password(app, client, roles):
    r = client.post("/api/admin/users", json=_new_user(roles))
    assert r.status_code == 201
    user = r.json["user"]
    assert user["email"] == "jsmith@example.com"
    assert user["role"] == "viewer"
    assert r.json["invite_sent"] is False

    other = app.test_client()
    r = other.post("/auth/login", data={"email": "jsmith", "password": "Secret123"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard/")


def test_create_user_validation(client, roles):
    r = client.post("/api/admin/users", json={"username": "x!", "email": "nope"})
    assert r.status_code == 400
    details = r.json["details"]
    assert "Username must be 3-50 characters." in details
    assert "Invalid email address." in details
    assert "Role is required." in details
    assert "Password is required unless an invite is sent." in details

    r = client.post("/api/admin/users", json=_new_user(roles, password=["Secret123"]))
    assert r.status_code == 400
    assert r.json["details"] == ["Password must be text."]


def test_create_user_duplicates(client, roles):
    r = client.post("/api/admin/users", json=_new_user(roles, username="Manager"))
    assert r.status_code == 400
    assert r.json["error"] == "Username is already taken"

    r = client.post("/api/admin/users", json=_new_user(roles, email="viewer@example.com"))
    assert r.status_code == 400
    assert r.json["error"] == "Email is already registered"

    r = client.post("/api/admin/users", json=_new_user(roles, role_id=999))
    assert r.status_code == 400
    assert r.json["error"] == "Invalid role"


def test_invite_emails_set_password_link(client, roles, sent_emails):
    payload = _new_user(roles, password="", confirm_password="", send_invite=True)
    r = client.post("/api/admin/users", json=payload)
    assert r.status_code == 201
    assert r.json["invite_sent"] is True
    assert len(sent_emails) == 1
    mail = sent_emails[0]
    assert mail["to"] == "jsmith@example.com"
    token = re.search(r"/auth/reset-password/(\S+)", mail["text"]).group(1)

    r = client.get(f"/auth/reset-password/{token}")
    assert r.status_code == 200


def test_invite_without_mail_config_still_creates(client, roles):
    payload = _new_user(roles, password="", confirm_password="", send_invite=True)
    r = client.post("/api/admin/users", json=payload)
    assert r.status_code == 201
    assert r.json["invite_sent"] is False


def test_list_and_filter_users(client, roles):
    r = client.get("/api/admin/users?role=viewer")
    assert [u["username"] for u in r.json["users"]] == ["viewer"]

    r = client.get("/api/admin/users?search=example.com&limit=2")
    assert r.json["total"] == 4
    assert r.json["total_pages"] == 2
    assert len(r.json["users"]) == 2


def test_update_user(client, roles, user_id):
    uid = user_id("viewer@example.com")
    r = client.put(f"/api/admin/users/{uid}", json={"first_name": "Vera", "role_id": roles["inspector"]["id"]})
    assert r.status_code == 200
    assert r.json["user"]["name"] == "Vera User"
    assert r.json["user"]["role"] == "inspector"

    r = client.put(f"/api/admin/users/{uid}", json={"email": "manager@example.com"})
    assert r.status_code == 400

    r = client.put(f"/api/admin/users/{uid}", json={"password": "weak"})
    assert r.status_code == 400

    r = client.get("/api/admin/users/999")
    assert r.status_code == 404


def test_soft_and_hard_delete(client, roles, user_id):
    uid = user_id("viewer@example.com")
    r = client.delete(f"/api/admin/users/{uid}?soft=1")
    assert r.status_code == 200
    assert client.get(f"/api/admin/users/{uid}").json["user"]["is_active"] is False

    r = client.get("/api/admin/users?active=inactive")
    assert [u["id"] for u in r.json["users"]] == [uid]

    r = client.delete(f"/api/admin/users/{uid}")
    assert r.status_code == 200
    assert client.get(f"/api/admin/users/{uid}").status_code == 404


def test_cannot_delete_self(client, roles, user_id):
    uid = user_id("admin@example.com")
    r = client.delete(f"/api/admin/users/{uid}")
    assert r.status_code == 400
    assert r.json["error"] == "You cannot delete your own account"
    r = client.delete(f"/api/admin/users/{uid}?soft=1")
    assert r.json["error"] == "You cannot deactivate your own account"


def test_manager_cannot_edit_users(app, login, user_id):
    manager = app.test_client()
    login(manager, "manager@example.com")
    assert manager.get("/api/admin/users").status_code == 200
    r = manager.delete(f"/api/admin/users/{user_id('viewer@example.com')}")
    assert r.status_code == 403
    assert manager.get("/dashboard/admin/users/new").status_code == 403


def test_profile_api(app, login, roles):
    viewer = app.test_client()
    login(viewer, "viewer@example.com")
    r = viewer.get("/api/profile")
    assert r.json["user"]["username"] == "viewer"
    assert r.json["organization"] is None

    r = viewer.put("/api/profile", json={"first_name": "Val", "phone": "04 1234 5678"})
    assert r.status_code == 200
    assert r.json["user"]["name"] == "Val User"

    r = viewer.put("/api/profile", json={"role_id": roles["admin"]["id"]})
    assert r.status_code == 400
    assert r.json["error"] == "Only administrators can change roles"

    r = viewer.put("/api/profile", json={"password": "Newpass123", "confirm_password": "Different1"})
    assert r.status_code == 400
    assert "Passwords do not match." in r.json["error"]


def test_user_pages(client, roles, sent_emails):
    assert client.get("/dashboard/admin/users").status_code == 200
    assert client.get("/dashboard/admin/users/new").status_code == 200

    form = _new_user(roles, password="", confirm_password="", send_invite="1")
    r = client.post("/dashboard/admin/users/new", data=form)
    assert r.status_code == 302
    assert len(sent_emails) == 1

    r = client.post("/dashboard/admin/users/new", data=_new_user(roles, username="other", password="bad"))
    assert r.status_code == 400
    assert b"Password must contain a number." in r.data

    r = client.get("/dashboard/admin/users?search=jsmith")
    assert b"jsmith@example.com" in r.data


def test_profile_page(app, login):
    viewer = app.test_client()
    login(viewer, "viewer@example.com")
    assert viewer.get("/dashboard/profile").status_code == 200
    r = viewer.post("/dashboard/profile", data={"first_name": "Vic", "last_name": "User"})
    assert r.status_code == 302
    assert b'value="Vic"' in viewer.get("/dashboard/profile").data
