from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

ROLES = ("admin", "corredor", "auditor")
USER_STATES = ("activo", "suspendido")


class UserOut(BaseModel):
    id: str
    email: Optional[str] = None
    nombre: Optional[str] = None
    rol: Optional[str] = None
    permisos: List[Any] = []
    estado: Optional[str] = None
    activo: bool = True
    mfa_habilitado: bool = Field(False, alias="mfaHabilitado")
    ultimo_acceso: Optional[datetime] = Field(None, alias="ultimoAcceso")
    fecha_registro: Optional[datetime] = Field(None, alias="fechaRegistro")

    class Config:
        populate_by_name = True


def role_name(row: Dict[str, Any]) -> Optional[str]:
    role = row.get("roles") or {}
    return role.get("nombre_rol")


def serialize_profile(row: Dict[str, Any]) -> UserOut:
    """Map a `usuarios` row (with its `roles` join) to the client shape."""
    role = row.get("roles") or {}
    activo = row.get("activo")
    activo = True if activo is None else bool(activo)
    return UserOut(
        id=str(row["id"]),
        email=row.get("email"),
        nombre=row.get("nombre"),
        rol=role.get("nombre_rol"),
        permisos=role.get("permisos") or [],
        estado=row.get("estado") or ("activo" if activo else "suspendido"),
        activo=activo,
        mfa_habilitado=bool(row.get("mfa_habilitado")),
        ultimo_acceso=row.get("ultimo_acceso"),
        fecha_registro=row.get("creado_en"),
    )


class UserCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    nombre: Optional[str] = None
    rol: Optional[str] = None
    estado: Optional[str] = "activo"
    mfa_habilitado: Optional[bool] = Field(False, alias="mfaHabilitado")

    class Config:
        populate_by_name = True


class UserUpdate(BaseModel):
    nombre: Optional[str] = None
    rol: Optional[str] = None
    estado: Optional[str] = None
    mfa_habilitado: Optional[bool] = Field(None, alias="mfaHabilitado")

    class Config:
        populate_by_name = True


class PasswordReset(BaseModel):
    new_password: Optional[str] = Field(None, alias="newPassword")

    class Config:
        populate_by_name = True


class UserResponse(BaseModel):
    success: bool = True
    user: UserOut


class UserListResponse(BaseModel):
    success: bool = True
    users: List[UserOut]


class MessageResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
