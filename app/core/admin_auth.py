from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.errors import ErrorCode, RelayError
from app.core.supabase import SupabaseGateway, get_gateway
from app.schemas.users import role_name

security = HTTPBearer(auto_error=False)

UPSTREAM_CODES = (ErrorCode.UPSTREAM_ERROR, ErrorCode.UPSTREAM_UNAVAILABLE)


def _resolve_caller(
    credentials: Optional[HTTPAuthorizationCredentials],
    gateway: SupabaseGateway,
) -> Dict[str, Any]:
    """
    Token -> provider user -> fresh profile row. The role is read from the
    `usuarios` table on every request and never from token claims, so a role
    change applies to the very next call.
    """
    if credentials is None or not credentials.credentials:
        raise RelayError(ErrorCode.AUTH_TOKEN_MISSING, "No autorizado")

    try:
        user = gateway.get_token_user(credentials.credentials)
        if user is None:
            raise RelayError(ErrorCode.AUTH_TOKEN_INVALID, "Token inválido")
        profile = gateway.get_profile(user["id"])
    except RelayError as e:
        if e.code in UPSTREAM_CODES:
            raise RelayError(e.code, e.message, status_code=500) from e
        raise

    return {
        "id": user["id"],
        "email": user.get("email"),
        "rol": role_name(profile) if profile else None,
        "activo": bool(profile.get("activo", True)) if profile else False,
        "profile": profile,
    }


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    gateway: SupabaseGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    caller = _resolve_caller(credentials, gateway)
    if caller["profile"] is None:
        raise RelayError(ErrorCode.AUTHZ_FORBIDDEN, "Tu usuario no está registrado en el sistema")
    if not caller["activo"]:
        raise RelayError(ErrorCode.AUTH_USER_INACTIVE, "Usuario suspendido. Contacta al administrador.")
    return caller


def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    gateway: SupabaseGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    caller = _resolve_caller(credentials, gateway)
    if caller["rol"] != "admin" or not caller["activo"]:
        raise RelayError(ErrorCode.AUTHZ_FORBIDDEN, "Requiere permisos de administrador")
    return caller


def require_roles(*roles: str):
    """Dependency factory: authenticated caller whose current role is in `roles`."""

    def _dependency(caller: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if caller["rol"] not in roles:
            raise RelayError(ErrorCode.AUTHZ_FORBIDDEN, "No tienes permisos para realizar esta acción")
        return caller

    return _dependency
