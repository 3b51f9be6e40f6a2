import logging
from typing import Any, Dict, List

from app.core.errors import ErrorCode, RelayError
from app.core.otp import normalize_email
from app.core.supabase import SupabaseGateway
from app.schemas.users import (
    ROLES,
    USER_STATES,
    PasswordReset,
    UserCreate,
    UserOut,
    UserUpdate,
    serialize_profile,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


class UsersService:
    """Privileged user administration (service-role key)."""

    def __init__(self, gateway: SupabaseGateway):
        self.gateway = gateway

    def create_user(self, payload: UserCreate) -> UserOut:
        if not payload.email or not payload.password or not payload.nombre or not payload.rol:
            raise RelayError(
                ErrorCode.VALIDATION_ERROR,
                "Faltan campos requeridos: email, password, nombre, rol",
            )
        if payload.rol not in ROLES:
            raise RelayError(ErrorCode.ROLE_NOT_FOUND, f'Rol "{payload.rol}" no encontrado')
        estado = payload.estado or "activo"
        if estado not in USER_STATES:
            raise RelayError(ErrorCode.VALIDATION_ERROR, f"Estado inválido: {estado}")

        email = normalize_email(payload.email)
        logger.info("Creating user %s (%s)", email, payload.rol)

        if self.gateway.auth_email_exists(email):
            raise RelayError(ErrorCode.USER_EXISTS, "El correo ya está registrado")

        user_id = self.gateway.create_auth_user(
            email,
            payload.password,
            {"nombre": payload.nombre, "rol": payload.rol},
        )

        # From here on a failure leaves an auth user without profile; undo it.
        try:
            role_id = self.gateway.get_role_id(payload.rol)
            if role_id is None:
                raise RelayError(ErrorCode.ROLE_NOT_FOUND, f'Rol "{payload.rol}" no encontrado')

            profile = self.gateway.upsert_profile({
                "id": user_id,
                "email": email,
                "nombre": payload.nombre,
                "rol_id": role_id,
                "estado": estado,
                "activo": estado == "activo",
                "mfa_habilitado": bool(payload.mfa_habilitado),
            })
            if profile is None:
                raise RelayError(ErrorCode.UPSTREAM_ERROR, "No se pudo crear el perfil")
        except RelayError:
            self._discard_auth_user(user_id)
            raise

        logger.info("User %s created with id %s", email, user_id)
        return serialize_profile(profile)

    def list_users(self) -> List[UserOut]:
        return [serialize_profile(row) for row in self.gateway.list_profiles()]

    def update_user(self, user_id: str, payload: UserUpdate) -> UserOut:
        updates: Dict[str, Any] = {}
        if payload.nombre is not None:
            updates["nombre"] = payload.nombre
        if payload.estado is not None:
            if payload.estado not in USER_STATES:
                raise RelayError(ErrorCode.VALIDATION_ERROR, f"Estado inválido: {payload.estado}")
            updates["estado"] = payload.estado
            updates["activo"] = payload.estado == "activo"
        if payload.mfa_habilitado is not None:
            updates["mfa_habilitado"] = payload.mfa_habilitado
        if payload.rol:
            role_id = self.gateway.get_role_id(payload.rol) if payload.rol in ROLES else None
            if role_id is None:
                raise RelayError(ErrorCode.ROLE_NOT_FOUND, f'Rol "{payload.rol}" no encontrado')
            updates["rol_id"] = role_id

        if not updates:
            raise RelayError(ErrorCode.VALIDATION_ERROR, "No hay cambios para aplicar")

        profile = self.gateway.update_profile(user_id, updates)
        if profile is None:
            raise RelayError(ErrorCode.RESOURCE_NOT_FOUND, "Usuario no encontrado")
        return serialize_profile(profile)

    def delete_user(self, user_id: str) -> None:
        self.gateway.delete_profile(user_id)
        try:
            self.gateway.delete_auth_user(user_id)
        except RelayError as e:
            logger.warning("User %s removed from usuarios but not from auth: %s", user_id, e.message)

    def reset_password(self, user_id: str, payload: PasswordReset) -> None:
        if not payload.new_password or len(payload.new_password) < MIN_PASSWORD_LENGTH:
            raise RelayError(
                ErrorCode.VALIDATION_ERROR,
                f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres",
            )
        self.gateway.update_auth_password(user_id, payload.new_password)
        logger.info("Password reset for user %s", user_id)

    def _discard_auth_user(self, user_id: str) -> None:
        try:
            self.gateway.delete_auth_user(user_id)
        except RelayError as e:
            logger.error("Orphaned auth user %s could not be removed: %s", user_id, e.message)
