import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.core.errors import ErrorCode, RelayError
from app.core.otp import OTPDeliveryError
from app.core.redis import RedisClient
from app.core.supabase import get_gateway
from app.main import app
from app.services.otp_service import OTPService, get_otp_service
from app.services.otp_store import InMemoryOTPStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMailer:
    def __init__(self):
        self.sent: List[tuple] = []
        self.fail_with: Optional[str] = None

    def send_otp(self, to_email: str, otp: str) -> None:
        if self.fail_with:
            raise OTPDeliveryError(self.fail_with)
        self.sent.append((to_email, otp))

    def last_code(self, to_email: str) -> str:
        return [otp for email, otp in self.sent if email == to_email][-1]


class FakeGateway:
    """In-memory stand-in for SupabaseGateway with the same method surface."""

    def __init__(self):
        self.roles = {"admin": 1, "corredor": 2, "auditor": 3}
        self.auth_users: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.certificates: Dict[str, Dict[str, Any]] = {}
        self.objects: Dict[str, bytes] = {}
        self.failing = set()
        self._ids = itertools.count(1)

    # helpers for tests
    def add_user(
        self,
        email: str,
        password: str = "secreto123",
        rol: str = "corredor",
        mfa: bool = False,
        activo: bool = True,
        with_profile: bool = True,
    ) -> Dict[str, str]:
        user_id = f"user-{next(self._ids)}"
        self.auth_users[user_id] = {"id": user_id, "email": email, "password": password}
        token = f"token-{user_id}"
        self.tokens[token] = user_id
        if with_profile:
            self.profiles[user_id] = {
                "id": user_id,
                "email": email,
                "nombre": email.split("@")[0].title(),
                "rol_id": self.roles[rol],
                "estado": "activo" if activo else "suspendido",
                "activo": activo,
                "mfa_habilitado": mfa,
                "ultimo_acceso": None,
                "creado_en": "2026-01-05T10:00:00Z",
            }
        return {"id": user_id, "token": token}

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RelayError(ErrorCode.UPSTREAM_ERROR, f"{name} failed")

    def _role_name(self, role_id) -> Optional[str]:
        for name, rid in self.roles.items():
            if rid == role_id:
                return name
        return None

    def _with_role(self, row: Dict[str, Any]) -> Dict[str, Any]:
        joined = dict(row)
        name = self._role_name(row.get("rol_id"))
        joined["roles"] = (
            {"id": row.get("rol_id"), "nombre_rol": name, "descripcion": None, "permisos": []}
            if name else None
        )
        return joined

    # auth
    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        self._check("sign_in")
        for user in self.auth_users.values():
            if user["email"] == email and user["password"] == password:
                token = f"token-{user['id']}"
                self.tokens[token] = user["id"]
                return {
                    "user_id": user["id"],
                    "email": user["email"],
                    "access_token": token,
                    "refresh_token": f"refresh-{user['id']}",
                    "expires_at": 0,
                }
        raise RelayError(ErrorCode.AUTH_INVALID_CREDENTIALS, "Invalid login credentials")

    def get_token_user(self, token: str) -> Optional[Dict[str, Any]]:
        self._check("get_token_user")
        user_id = self.tokens.get(token)
        if user_id is None or user_id not in self.auth_users:
            return None
        return {"id": user_id, "email": self.auth_users[user_id]["email"]}

    def auth_email_exists(self, email: str) -> bool:
        return any(u["email"] == email for u in self.auth_users.values())

    def create_auth_user(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        self._check("create_auth_user")
        user_id = f"user-{next(self._ids)}"
        self.auth_users[user_id] = {"id": user_id, "email": email, "password": password, "meta": metadata}
        return user_id

    def delete_auth_user(self, user_id: str) -> None:
        self._check("delete_auth_user")
        self.auth_users.pop(user_id, None)

    def update_auth_password(self, user_id: str, password: str) -> None:
        self._check("update_auth_password")
        if user_id not in self.auth_users:
            raise RelayError(ErrorCode.UPSTREAM_ERROR, "User not found")
        self.auth_users[user_id]["password"] = password

    # profiles
    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        self._check("get_profile")
        row = self.profiles.get(user_id)
        return self._with_role(row) if row else None

    def list_profiles(self) -> List[Dict[str, Any]]:
        self._check("list_profiles")
        rows = sorted(self.profiles.values(), key=lambda r: r.get("nombre") or "")
        return [self._with_role(r) for r in rows]

    def upsert_profile(self, row: Dict[str, Any]) -> Dict[str, Any]:
        self._check("upsert_profile")
        self.profiles[row["id"]] = {**self.profiles.get(row["id"], {}), **row}
        return self._with_role(self.profiles[row["id"]])

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._check("update_profile")
        if user_id not in self.profiles:
            return None
        self.profiles[user_id].update(updates)
        return self._with_role(self.profiles[user_id])

    def delete_profile(self, user_id: str) -> None:
        self._check("delete_profile")
        self.profiles.pop(user_id, None)

    def get_role_id(self, role_name: str):
        self._check("get_role_id")
        return self.roles.get(role_name)

    # certificates
    def upload_object(self, path: str, data: bytes, content_type: str) -> str:
        self._check("upload_object")
        self.objects[path] = data
        return path

    def remove_object(self, path: str) -> None:
        self._check("remove_object")
        self.objects.pop(path, None)

    def signed_url(self, path: str, expires_in: int) -> str:
        return f"https://storage.test/{path}?expires={expires_in}"

    def insert_certificate(self, row: Dict[str, Any]) -> Dict[str, Any]:
        self._check("insert_certificate")
        cert_id = f"cert-{next(self._ids)}"
        self.certificates[cert_id] = {"id": cert_id, **row}
        return dict(self.certificates[cert_id])

    def get_certificate(self, certificate_id: str) -> Optional[Dict[str, Any]]:
        row = self.certificates.get(certificate_id)
        return dict(row) if row else None

    def list_certificates(self, usuario_id=None, estado=None, fecha_desde=None, fecha_hasta=None):
        rows = list(self.certificates.values())
        if usuario_id:
            rows = [r for r in rows if r["usuario_id"] == usuario_id]
        if estado:
            rows = [r for r in rows if r["estado"] == estado]
        if fecha_desde:
            rows = [r for r in rows if r["fecha_carga"] >= fecha_desde]
        if fecha_hasta:
            rows = [r for r in rows if r["fecha_carga"] <= fecha_hasta]
        return sorted((dict(r) for r in rows), key=lambda r: r["fecha_carga"], reverse=True)

    def update_certificate(self, certificate_id: str, updates: Dict[str, Any]):
        if certificate_id not in self.certificates:
            return None
        self.certificates[certificate_id].update(updates)
        return dict(self.certificates[certificate_id])

    def delete_certificate(self, certificate_id: str) -> None:
        self._check("delete_certificate")
        self.certificates.pop(certificate_id, None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def otp_store(clock):
    return InMemoryOTPStore(retention_seconds=600, clock=clock)


@pytest.fixture
def otp_service(otp_store, mailer, clock):
    return OTPService(otp_store, mailer, expiry_minutes=5, max_attempts=5, clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(gateway, otp_service):
    RedisClient.set_client(None)
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_otp_service] = lambda: otp_service
    yield TestClient(app)
    app.dependency_overrides.clear()
