import pytest


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


NEW_USER = {
    "email": "Nuevo@Corredora.cl",
    "password": "secreto123",
    "nombre": "Nuevo Corredor",
    "rol": "corredor",
}


@pytest.fixture
def admin(gateway):
    return gateway.add_user("admin@corredora.cl", rol="admin")


def test_missing_token_is_unauthorized(client):
    res = client.get("/api/admin/users")
    assert res.status_code == 401
    assert res.json() == {"success": False, "error": "No autorizado", "code": "AUTH_TOKEN_MISSING"}


def test_unknown_token_is_unauthorized(client):
    res = client.get("/api/admin/users", headers=bearer("forged"))
    assert res.status_code == 401
    assert res.json()["error"] == "Token inválido"


def test_non_admin_is_forbidden(client, gateway):
    broker = gateway.add_user("ana@corredora.cl", rol="corredor")
    res = client.get("/api/admin/users", headers=bearer(broker["token"]))
    assert res.status_code == 403
    assert res.json()["error"] == "Requiere permisos de administrador"


def test_user_without_profile_is_forbidden(client, gateway):
    ghost = gateway.add_user("ghost@corredora.cl", with_profile=False)
    res = client.get("/api/admin/users", headers=bearer(ghost["token"]))
    assert res.status_code == 403


def test_suspended_admin_is_forbidden(client, gateway):
    suspended = gateway.add_user("old@corredora.cl", rol="admin", activo=False)
    res = client.get("/api/admin/users", headers=bearer(suspended["token"]))
    assert res.status_code == 403


def test_profile_lookup_failure_is_internal_error(client, gateway, admin):
    gateway.failing.add("get_profile")
    res = client.get("/api/admin/users", headers=bearer(admin["token"]))
    assert res.status_code == 500
    assert res.json()["success"] is False


def test_role_change_applies_on_next_request(client, gateway, admin):
    assert client.get("/api/admin/users", headers=bearer(admin["token"])).status_code == 200

    gateway.profiles[admin["id"]]["rol_id"] = gateway.roles["auditor"]
    assert client.get("/api/admin/users", headers=bearer(admin["token"])).status_code == 403


def test_list_users(client, gateway, admin):
    gateway.add_user("ana@corredora.cl", rol="corredor")

    res = client.get("/api/admin/users", headers=bearer(admin["token"]))
    assert res.status_code == 200
    users = res.json()["users"]
    assert [u["email"] for u in users] == ["admin@corredora.cl", "ana@corredora.cl"]
    assert users[0]["rol"] == "admin"


def test_create_user(client, gateway, admin):
    res = client.post("/api/admin/users", json=NEW_USER, headers=bearer(admin["token"]))
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["email"] == "nuevo@corredora.cl"
    assert user["rol"] == "corredor"
    assert user["estado"] == "activo"
    assert user["mfaHabilitado"] is False
    assert user["id"] in gateway.auth_users
    assert gateway.auth_users[user["id"]]["password"] == "secreto123"


def test_create_user_with_mfa_flag(client, admin):
    body = dict(NEW_USER, mfaHabilitado=True)
    res = client.post("/api/admin/users", json=body, headers=bearer(admin["token"]))
    assert res.json()["user"]["mfaHabilitado"] is True


def test_create_user_missing_fields(client, admin):
    res = client.post(
        "/api/admin/users",
        json={"email": "x@corredora.cl"},
        headers=bearer(admin["token"]),
    )
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_create_user_unknown_role(client, gateway, admin):
    body = dict(NEW_USER, rol="superuser")
    res = client.post("/api/admin/users", json=body, headers=bearer(admin["token"]))
    assert res.status_code == 400
    assert res.json()["code"] == "ROLE_NOT_FOUND"
    assert len(gateway.auth_users) == 1


def test_create_duplicate_email(client, gateway, admin):
    gateway.add_user("nuevo@corredora.cl")
    res = client.post("/api/admin/users", json=NEW_USER, headers=bearer(admin["token"]))
    assert res.status_code == 409
    assert res.json()["code"] == "USER_EXISTS"


def test_create_user_removes_auth_user_when_profile_fails(client, gateway, admin):
    gateway.failing.add("upsert_profile")

    res = client.post("/api/admin/users", json=NEW_USER, headers=bearer(admin["token"]))
    assert res.status_code == 502
    assert not any(u["email"] == "nuevo@corredora.cl" for u in gateway.auth_users.values())


def test_create_user_role_missing_in_table(client, gateway, admin):
    del gateway.roles["auditor"]
    body = dict(NEW_USER, rol="auditor")

    res = client.post("/api/admin/users", json=body, headers=bearer(admin["token"]))
    assert res.status_code == 400
    assert res.json()["code"] == "ROLE_NOT_FOUND"
    assert not any(u["email"] == "nuevo@corredora.cl" for u in gateway.auth_users.values())


def test_update_user(client, gateway, admin):
    broker = gateway.add_user("ana@corredora.cl", rol="corredor")

    res = client.put(
        f"/api/admin/users/{broker['id']}",
        json={"rol": "auditor", "estado": "suspendido", "mfaHabilitado": True},
        headers=bearer(admin["token"]),
    )
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["rol"] == "auditor"
    assert user["estado"] == "suspendido"
    assert user["activo"] is False
    assert user["mfaHabilitado"] is True


def test_update_unknown_user(client, admin):
    res = client.put(
        "/api/admin/users/missing",
        json={"nombre": "X"},
        headers=bearer(admin["token"]),
    )
    assert res.status_code == 404


def test_update_without_changes(client, gateway, admin):
    broker = gateway.add_user("ana@corredora.cl")
    res = client.put(f"/api/admin/users/{broker['id']}", json={}, headers=bearer(admin["token"]))
    assert res.status_code == 400


def test_delete_user(client, gateway, admin):
    broker = gateway.add_user("ana@corredora.cl")

    res = client.delete(f"/api/admin/users/{broker['id']}", headers=bearer(admin["token"]))
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert broker["id"] not in gateway.profiles
    assert broker["id"] not in gateway.auth_users


def test_delete_user_tolerates_auth_failure(client, gateway, admin):
    broker = gateway.add_user("ana@corredora.cl")
    gateway.failing.add("delete_auth_user")

    res = client.delete(f"/api/admin/users/{broker['id']}", headers=bearer(admin["token"]))
    assert res.status_code == 200
    assert broker["id"] not in gateway.profiles


def test_reset_password(client, gateway, admin):
    broker = gateway.add_user("ana@corredora.cl")

    res = client.post(
        f"/api/admin/users/{broker['id']}/reset-password",
        json={"newPassword": "nuevaClave99"},
        headers=bearer(admin["token"]),
    )
    assert res.status_code == 200
    assert gateway.auth_users[broker["id"]]["password"] == "nuevaClave99"


def test_reset_password_too_short(client, gateway, admin):
    broker = gateway.add_user("ana@corredora.cl")

    res = client.post(
        f"/api/admin/users/{broker['id']}/reset-password",
        json={"newPassword": "corta"},
        headers=bearer(admin["token"]),
    )
    assert res.status_code == 400
    assert gateway.auth_users[broker["id"]]["password"] == "secreto123"


def test_token_lookup_failure_is_internal_error(client, gateway, admin):
    gateway.failing.add("get_token_user")
    res = client.get("/api/admin/users", headers=bearer(admin["token"]))
    assert res.status_code == 500
    assert res.json()["error"] == "get_token_user failed"
