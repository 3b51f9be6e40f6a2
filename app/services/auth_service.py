"""
Credential relay: password check delegated to Supabase, profile lookup,
optional e-mail OTP second factor.
"""

import logging
import re
from typing import Any, Dict

from app.core.errors import ErrorCode, RelayError
from app.core.otp import normalize_email
from app.core.supabase import SupabaseGateway
from app.core.timezone import get_utc_now, to_iso
from app.schemas.users import UserOut, serialize_profile
from app.services.otp_service import OTPService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def default_name(email: str) -> str:
    """'maria.perez@x.cl' -> 'Maria Perez'"""
    local = email.split("@")[0]
    words = re.sub(r"[^a-zA-Z0-9]", " ", local).split()
    return " ".join(w[:1].upper() + w[1:] for w in words) or local


class AuthService:
    def __init__(
        self,
        gateway: SupabaseGateway,
        otp_service: OTPService,
        auto_provision_profile: bool = True,
        default_role: str = "corredor",
    ):
        self.gateway = gateway
        self.otp_service = otp_service
        self.auto_provision_profile = auto_provision_profile
        self.default_role = default_role

    def login(self, email: str, password: str) -> Dict[str, Any]:
        if not email or not email.strip() or not password:
            raise RelayError(ErrorCode.VALIDATION_ERROR, "Faltan campos requeridos: email, password")

        email = normalize_email(email)
        session = self.gateway.sign_in(email, password)

        profile = self.gateway.get_profile(session["user_id"])
        if profile is None:
            profile = self._provision_profile(session["user_id"], session["email"] or email)

        user = serialize_profile(profile)
        if not user.activo:
            raise RelayError(ErrorCode.AUTH_USER_INACTIVE, "Usuario suspendido. Contacta al administrador.")

        self._touch_last_access(user.id)

        if user.mfa_habilitado:
            pending = {
                "access_token": session["access_token"],
                "refresh_token": session["refresh_token"],
                "user": user.model_dump(mode="json"),
            }
            self.otp_service.issue_new(user.email or email, session=pending)
            logger.info("MFA challenge issued for %s", email)
            return {
                "success": True,
                "requires_mfa": True,
                "email": user.email or email,
                "user_id": user.id,
            }

        logger.info("Login ok for %s (%s)", email, user.rol)
        return {
            "success": True,
            "requires_mfa": False,
            "token": session["access_token"],
            "refresh_token": session["refresh_token"],
            "user": user,
        }

    def verify_mfa(self, email: str, code: str) -> Dict[str, Any]:
        record = self.otp_service.verify(email, code)
        if not record.session:
            return {"success": True}
        return {
            "success": True,
            "token": record.session.get("access_token"),
            "refresh_token": record.session.get("refresh_token"),
            "user": UserOut(**record.session["user"]) if record.session.get("user") else None,
        }

    def _provision_profile(self, user_id: str, email: str) -> Dict[str, Any]:
        if not self.auto_provision_profile:
            logger.warning("No profile for %s and auto-provisioning is disabled", email)
            raise RelayError(
                ErrorCode.PROFILE_NOT_FOUND,
                "Tu usuario no está registrado en el sistema. Contacta al administrador.",
            )

        role_id = self.gateway.get_role_id(self.default_role)
        if role_id is None:
            raise RelayError(ErrorCode.ROLE_NOT_FOUND, f'No se encontró el rol "{self.default_role}"')

        logger.info("Creating default profile for %s", email)
        return self.gateway.upsert_profile({
            "id": user_id,
            "email": email,
            "nombre": default_name(email),
            "rol_id": role_id,
            "estado": "activo",
            "activo": True,
        })

    def _touch_last_access(self, user_id: str) -> None:
        try:
            self.gateway.update_profile(user_id, {"ultimo_acceso": to_iso(get_utc_now())})
        except RelayError as e:
            logger.warning("Could not update ultimo_acceso for %s: %s", user_id, e.message)
