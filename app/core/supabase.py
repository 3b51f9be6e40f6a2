"""
Supabase gateway.

Every call the relay makes to the hosted project (GoTrue auth, PostgREST
tables, storage bucket) goes through SupabaseGateway so provider errors are
translated to RelayError in one place. The service-role client never leaves
this process.
"""

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from supabase import (
    AuthApiError,
    AuthError,
    Client,
    ClientOptions,
    PostgrestAPIError,
    StorageException,
    create_client,
)

from app.core.config import settings
from app.core.errors import ErrorCode, RelayError

logger = logging.getLogger(__name__)

PROFILES_TABLE = "usuarios"
ROLES_TABLE = "roles"
CERTIFICATES_TABLE = "certificados_tributarios"

PROFILE_SELECT = "*, roles:rol_id(id, nombre_rol, descripcion, permisos)"
CERTIFICATE_SELECT = "*, usuarios:usuario_id(nombre, email, roles:rol_id(nombre_rol))"

LIST_USERS_PAGE_SIZE = 1000


def _provider_message(exc: Exception) -> str:
    message = getattr(exc, "message", None)
    if message:
        return str(message)
    if exc.args and isinstance(exc.args[0], dict):
        return str(exc.args[0].get("message") or exc.args[0])
    return str(exc)


@contextmanager
def provider_call(action: str):
    """Translate provider/network failures raised inside the block."""
    try:
        yield
    except RelayError:
        raise
    except httpx.TransportError as e:
        logger.error("Supabase unreachable during %s: %s", action, str(e))
        raise RelayError(ErrorCode.UPSTREAM_UNAVAILABLE, f"Servicio no disponible: {e}") from e
    except (AuthError, PostgrestAPIError, StorageException) as e:
        logger.error("Supabase error during %s: %s", action, _provider_message(e))
        raise RelayError(ErrorCode.UPSTREAM_ERROR, _provider_message(e)) from e


def _client_options() -> ClientOptions:
    return ClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        postgrest_client_timeout=settings.SUPABASE_TIMEOUT_SECONDS,
        storage_client_timeout=int(settings.SUPABASE_TIMEOUT_SECONDS),
    )


def _first(rows: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


class SupabaseGateway:
    def __init__(self, url: str, anon_key: str, service_key: str, bucket: str):
        self.url = url
        self.anon_key = anon_key
        self.bucket = bucket
        self.admin: Client = create_client(url, service_key, options=_client_options())

    # ---------- auth ----------

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """
        Password check on a throwaway anon-key client; signing in on the
        service client would swap its credentials for the user's.
        """
        client = create_client(self.url, self.anon_key, options=_client_options())
        try:
            response = client.auth.sign_in_with_password({"email": email, "password": password})
        except AuthApiError as e:
            raise RelayError(ErrorCode.AUTH_INVALID_CREDENTIALS, _provider_message(e)) from e
        except httpx.TransportError as e:
            raise RelayError(ErrorCode.UPSTREAM_UNAVAILABLE, f"Servicio no disponible: {e}") from e
        except AuthError as e:
            raise RelayError(ErrorCode.UPSTREAM_UNAVAILABLE, _provider_message(e)) from e

        session = response.session
        return {
            "user_id": response.user.id,
            "email": response.user.email,
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_at": session.expires_at,
        }

    def get_token_user(self, token: str) -> Optional[Dict[str, Any]]:
        """Resolve a bearer token to {id, email}; None when the token is rejected."""
        try:
            response = self.admin.auth.get_user(token)
        except AuthApiError as e:
            if (getattr(e, "status", None) or 0) >= 500:
                raise RelayError(ErrorCode.UPSTREAM_ERROR, _provider_message(e)) from e
            return None
        except httpx.TransportError as e:
            raise RelayError(ErrorCode.UPSTREAM_UNAVAILABLE, f"Servicio no disponible: {e}") from e
        except AuthError as e:
            raise RelayError(ErrorCode.UPSTREAM_ERROR, _provider_message(e)) from e

        if response is None or response.user is None:
            return None
        return {"id": response.user.id, "email": response.user.email}

    def auth_email_exists(self, email: str) -> bool:
        target = email.strip().lower()
        page = 1
        with provider_call("list auth users"):
            while True:
                users = self.admin.auth.admin.list_users(page=page, per_page=LIST_USERS_PAGE_SIZE)
                if any((u.email or "").lower() == target for u in users):
                    return True
                if len(users) < LIST_USERS_PAGE_SIZE:
                    return False
                page += 1

    def create_auth_user(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        try:
            response = self.admin.auth.admin.create_user({
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": metadata,
            })
        except AuthApiError as e:
            raise RelayError(ErrorCode.VALIDATION_ERROR, _provider_message(e)) from e
        except httpx.TransportError as e:
            raise RelayError(ErrorCode.UPSTREAM_UNAVAILABLE, f"Servicio no disponible: {e}") from e
        return response.user.id

    def delete_auth_user(self, user_id: str) -> None:
        with provider_call("delete auth user"):
            self.admin.auth.admin.delete_user(user_id)

    def update_auth_password(self, user_id: str, password: str) -> None:
        with provider_call("update password"):
            self.admin.auth.admin.update_user_by_id(user_id, {"password": password})

    # ---------- profiles ----------

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with provider_call("get profile"):
            result = (
                self.admin.table(PROFILES_TABLE)
                .select(PROFILE_SELECT)
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        return _first(result.data)

    def list_profiles(self) -> List[Dict[str, Any]]:
        with provider_call("list profiles"):
            result = (
                self.admin.table(PROFILES_TABLE)
                .select(PROFILE_SELECT)
                .order("nombre")
                .execute()
            )
        return result.data or []

    def upsert_profile(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with provider_call("upsert profile"):
            self.admin.table(PROFILES_TABLE).upsert(row).execute()
        return self.get_profile(row["id"])

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with provider_call("update profile"):
            result = self.admin.table(PROFILES_TABLE).update(updates).eq("id", user_id).execute()
        if not result.data:
            return None
        return self.get_profile(user_id)

    def delete_profile(self, user_id: str) -> None:
        with provider_call("delete profile"):
            self.admin.table(PROFILES_TABLE).delete().eq("id", user_id).execute()

    def get_role_id(self, role_name: str) -> Optional[Any]:
        with provider_call("get role"):
            result = (
                self.admin.table(ROLES_TABLE)
                .select("id")
                .eq("nombre_rol", role_name)
                .limit(1)
                .execute()
            )
        row = _first(result.data)
        return row["id"] if row else None

    # ---------- certificates ----------

    def upload_object(self, path: str, data: bytes, content_type: str) -> str:
        with provider_call("upload object"):
            self.admin.storage.from_(self.bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )
        return path

    def remove_object(self, path: str) -> None:
        with provider_call("remove object"):
            self.admin.storage.from_(self.bucket).remove([path])

    def signed_url(self, path: str, expires_in: int) -> str:
        with provider_call("signed url"):
            res = self.admin.storage.from_(self.bucket).create_signed_url(path, expires_in)
        url = res.get("signedURL") or res.get("signedUrl") or ""
        if not url:
            raise RelayError(ErrorCode.UPSTREAM_ERROR, "No se pudo generar la URL de descarga")
        return url

    def insert_certificate(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with provider_call("insert certificate"):
            result = self.admin.table(CERTIFICATES_TABLE).insert(row).execute()
        created = _first(result.data)
        if created is None:
            raise RelayError(ErrorCode.UPSTREAM_ERROR, "El certificado no fue registrado")
        return created

    def get_certificate(self, certificate_id: str) -> Optional[Dict[str, Any]]:
        with provider_call("get certificate"):
            result = (
                self.admin.table(CERTIFICATES_TABLE)
                .select(CERTIFICATE_SELECT)
                .eq("id", certificate_id)
                .limit(1)
                .execute()
            )
        return _first(result.data)

    def list_certificates(
        self,
        usuario_id: Optional[str] = None,
        estado: Optional[str] = None,
        fecha_desde: Optional[str] = None,
        fecha_hasta: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with provider_call("list certificates"):
            query = (
                self.admin.table(CERTIFICATES_TABLE)
                .select(CERTIFICATE_SELECT)
                .order("fecha_carga", desc=True)
            )
            if usuario_id:
                query = query.eq("usuario_id", usuario_id)
            if estado:
                query = query.eq("estado", estado)
            if fecha_desde:
                query = query.gte("fecha_carga", fecha_desde)
            if fecha_hasta:
                query = query.lte("fecha_carga", fecha_hasta)
            result = query.execute()
        return result.data or []

    def update_certificate(self, certificate_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with provider_call("update certificate"):
            result = (
                self.admin.table(CERTIFICATES_TABLE)
                .update(updates)
                .eq("id", certificate_id)
                .execute()
            )
        return _first(result.data)

    def delete_certificate(self, certificate_id: str) -> None:
        with provider_call("delete certificate"):
            self.admin.table(CERTIFICATES_TABLE).delete().eq("id", certificate_id).execute()

    # ---------- health ----------

    def ping(self) -> int:
        response = httpx.get(
            f"{self.url.rstrip('/')}/auth/v1/health",
            headers={"apikey": self.anon_key},
            timeout=5.0,
        )
        return response.status_code


@lru_cache
def get_gateway() -> SupabaseGateway:
    """Dependency returning the process-wide gateway"""
    return SupabaseGateway(
        url=settings.SUPABASE_URL,
        anon_key=settings.SUPABASE_ANON_KEY,
        service_key=settings.SUPABASE_SERVICE_KEY,
        bucket=settings.CERTIFICATES_BUCKET,
    )
