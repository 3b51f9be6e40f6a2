from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

CERTIFICATE_STATES = ("pendiente", "validado", "error", "enviado_sii")

CertificateState = Literal["pendiente", "validado", "error", "enviado_sii"]


class CertificateOut(BaseModel):
    id: Any
    usuario_id: Optional[str] = None
    nombre_archivo: Optional[str] = None
    storage_key: Optional[str] = None
    tipo_archivo: Optional[str] = None
    tamano_bytes: Optional[int] = Field(None, alias="tamaño_bytes")
    estado: Optional[str] = None
    fecha_carga: Optional[datetime] = None
    usuarios: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class UploadError(BaseModel):
    file: str
    error: str


class UploadResponse(BaseModel):
    success: bool
    certificates: List[CertificateOut]
    errors: List[UploadError] = []


class CertificateListResponse(BaseModel):
    success: bool = True
    certificates: List[CertificateOut]


class CertificateResponse(BaseModel):
    success: bool = True
    certificate: CertificateOut


class StatusUpdate(BaseModel):
    estado: CertificateState


class DownloadResponse(BaseModel):
    success: bool = True
    url: str
    expires_in: int = Field(alias="expiresIn")

    class Config:
        populate_by_name = True


class ReportSummary(BaseModel):
    total: int
    total_bytes: int = Field(alias="totalBytes")
    by_status: Dict[str, int] = Field(alias="byStatus")
    by_month: Dict[str, int] = Field(alias="byMonth")
    users_by_role: Dict[str, int] = Field(alias="usersByRole")

    class Config:
        populate_by_name = True


class ReportResponse(BaseModel):
    success: bool = True
    summary: ReportSummary
