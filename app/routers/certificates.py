from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile

from app.core.admin_auth import get_current_admin, get_current_user, require_roles
from app.core.config import settings
from app.core.supabase import SupabaseGateway, get_gateway
from app.schemas.certificates import (
    CertificateListResponse,
    CertificateOut,
    CertificateResponse,
    CertificateState,
    DownloadResponse,
    StatusUpdate,
    UploadResponse,
)
from app.schemas.users import MessageResponse
from app.services.certificate_service import CertificateService, IncomingFile

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


def get_certificate_service(gateway: SupabaseGateway = Depends(get_gateway)) -> CertificateService:
    return CertificateService(
        gateway,
        allowed_types=settings.certificate_allowed_types_list,
        max_bytes=settings.CERTIFICATE_MAX_BYTES,
        max_files=settings.CERTIFICATE_MAX_FILES,
        signed_url_expiry=settings.SIGNED_URL_EXPIRY_SECONDS,
    )


@router.post("", response_model=UploadResponse)
def upload_certificates(
    files: List[UploadFile] = File(...),
    caller: Dict[str, Any] = Depends(require_roles("admin", "corredor")),
    service: CertificateService = Depends(get_certificate_service),
):
    """Bulk upload. Each file is stored and registered independently."""
    # one byte past the limit is enough for the size check to reject it
    read_limit = settings.CERTIFICATE_MAX_BYTES + 1
    incoming = [
        IncomingFile(
            filename=f.filename or "certificado.pdf",
            content_type=f.content_type or "",
            data=f.file.read(read_limit),
        )
        for f in files
    ]
    result = service.upload_many(caller, incoming)
    return UploadResponse(
        success=result["success"],
        certificates=[CertificateOut.model_validate(c) for c in result["certificates"]],
        errors=result["errors"],
    )


@router.get("", response_model=CertificateListResponse)
def list_certificates(
    estado: Optional[CertificateState] = Query(None, description="pendiente, validado, error, enviado_sii"),
    fecha_desde: Optional[str] = Query(None, description="ISO date/time lower bound on fecha_carga"),
    fecha_hasta: Optional[str] = Query(None, description="ISO date/time upper bound on fecha_carga"),
    caller: Dict[str, Any] = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
):
    """Newest first. Brokers only see their own certificates."""
    rows = service.list_for(caller, estado=estado, fecha_desde=fecha_desde, fecha_hasta=fecha_hasta)
    return CertificateListResponse(certificates=[CertificateOut.model_validate(r) for r in rows])


@router.get("/{certificate_id}/download", response_model=DownloadResponse)
def download_certificate(
    certificate_id: str,
    caller: Dict[str, Any] = Depends(get_current_user),
    service: CertificateService = Depends(get_certificate_service),
):
    url = service.download_url(caller, certificate_id)
    return DownloadResponse(url=url, expires_in=settings.SIGNED_URL_EXPIRY_SECONDS)


@router.patch("/{certificate_id}/status", response_model=CertificateResponse)
def update_certificate_status(
    certificate_id: str,
    body: StatusUpdate,
    _admin: Dict[str, Any] = Depends(get_current_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    updated = service.set_status(certificate_id, body.estado)
    return CertificateResponse(certificate=CertificateOut.model_validate(updated))


@router.delete("/{certificate_id}", response_model=MessageResponse)
def delete_certificate(
    certificate_id: str,
    _admin: Dict[str, Any] = Depends(get_current_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    service.delete(certificate_id)
    return MessageResponse(message="Certificado eliminado correctamente")
