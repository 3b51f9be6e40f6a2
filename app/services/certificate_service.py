"""
Certificate upload / listing / download / deletion on top of Supabase
storage + the `certificados_tributarios` table.

Upload is two provider calls (object, then row) with no shared transaction;
when the row insert fails the object is removed again (compensation) and the
file is reported as one combined error.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.core.errors import ErrorCode, RelayError
from app.core.supabase import SupabaseGateway
from app.core.timezone import get_utc_now, to_iso

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FULL_ACCESS_ROLES = ("admin", "auditor")


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    data: bytes


def build_storage_key(user_id: str, filename: str) -> str:
    ext = os.path.splitext(filename)[1].lstrip(".").lower() or "pdf"
    stamp = int(get_utc_now().timestamp() * 1000)
    return f"{user_id}/{stamp}-{secrets.token_hex(4)}.{ext}"


class CertificateService:
    def __init__(
        self,
        gateway: SupabaseGateway,
        allowed_types: List[str],
        max_bytes: int,
        max_files: int,
        signed_url_expiry: int = 3600,
    ):
        self.gateway = gateway
        self.allowed_types = allowed_types
        self.max_bytes = max_bytes
        self.max_files = max_files
        self.signed_url_expiry = signed_url_expiry

    def upload_many(self, caller: Dict[str, Any], files: List[IncomingFile]) -> Dict[str, Any]:
        if not files:
            raise RelayError(ErrorCode.VALIDATION_ERROR, "No se recibieron archivos")
        if len(files) > self.max_files:
            raise RelayError(
                ErrorCode.VALIDATION_ERROR,
                f"Máximo {self.max_files} archivos por carga",
            )

        created, errors = [], []
        for incoming in files:
            try:
                created.append(self.upload_one(caller, incoming))
            except RelayError as e:
                errors.append({"file": incoming.filename, "error": e.message})

        logger.info(
            "Upload by %s: %s stored, %s failed", caller["id"], len(created), len(errors)
        )
        return {"success": bool(created), "certificates": created, "errors": errors}

    def upload_one(self, caller: Dict[str, Any], incoming: IncomingFile) -> Dict[str, Any]:
        self._validate(incoming)

        key = build_storage_key(caller["id"], incoming.filename)
        self.gateway.upload_object(key, incoming.data, incoming.content_type)

        row = {
            "usuario_id": caller["id"],
            "nombre_archivo": incoming.filename,
            "storage_key": key,
            "tipo_archivo": incoming.content_type,
            "tamaño_bytes": len(incoming.data),
            "estado": "pendiente",
            "fecha_carga": to_iso(get_utc_now()),
        }
        try:
            return self.gateway.insert_certificate(row)
        except RelayError as e:
            cleanup = self._remove_quietly(key)
            message = f"Error registrando certificado: {e.message}"
            if not cleanup:
                message += " (el archivo quedó en el almacenamiento)"
            raise RelayError(e.code, message) from e

    def list_for(
        self,
        caller: Dict[str, Any],
        estado: Optional[str] = None,
        fecha_desde: Optional[str] = None,
        fecha_hasta: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        owner = None if caller["rol"] in FULL_ACCESS_ROLES else caller["id"]
        return self.gateway.list_certificates(
            usuario_id=owner,
            estado=estado,
            fecha_desde=fecha_desde,
            fecha_hasta=fecha_hasta,
        )

    def get_for(self, caller: Dict[str, Any], certificate_id: str) -> Dict[str, Any]:
        certificate = self.gateway.get_certificate(certificate_id)
        if certificate is None:
            raise RelayError(ErrorCode.RESOURCE_NOT_FOUND, "Certificado no encontrado")
        if caller["rol"] not in FULL_ACCESS_ROLES and certificate.get("usuario_id") != caller["id"]:
            raise RelayError(ErrorCode.AUTHZ_FORBIDDEN, "No tienes acceso a este certificado")
        return certificate

    def download_url(self, caller: Dict[str, Any], certificate_id: str) -> str:
        certificate = self.get_for(caller, certificate_id)
        return self.gateway.signed_url(certificate["storage_key"], self.signed_url_expiry)

    def set_status(self, certificate_id: str, estado: str) -> Dict[str, Any]:
        updated = self.gateway.update_certificate(certificate_id, {"estado": estado})
        if updated is None:
            raise RelayError(ErrorCode.RESOURCE_NOT_FOUND, "Certificado no encontrado")
        logger.info("Certificate %s -> %s", certificate_id, estado)
        return updated

    def delete(self, certificate_id: str) -> None:
        certificate = self.gateway.get_certificate(certificate_id)
        if certificate is None:
            raise RelayError(ErrorCode.RESOURCE_NOT_FOUND, "Certificado no encontrado")
        self.gateway.delete_certificate(certificate_id)
        self._remove_quietly(certificate["storage_key"])
        logger.info("Certificate %s deleted", certificate_id)

    def _validate(self, incoming: IncomingFile) -> None:
        content_type = (incoming.content_type or "").lower()
        if content_type not in self.allowed_types:
            raise RelayError(
                ErrorCode.VALIDATION_ERROR,
                f"Tipo de archivo no permitido: {incoming.content_type or 'desconocido'}",
            )
        if not incoming.data:
            raise RelayError(ErrorCode.VALIDATION_ERROR, "El archivo está vacío")
        if len(incoming.data) > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise RelayError(ErrorCode.VALIDATION_ERROR, f"El archivo supera el máximo de {limit_mb}MB")

    def _remove_quietly(self, key: str) -> bool:
        try:
            self.gateway.remove_object(key)
            return True
        except RelayError as e:
            logger.error("Orphaned object %s could not be removed: %s", key, e.message)
            return False
