from fastapi import APIRouter, Depends

from app.core.admin_auth import get_current_admin
from app.core.supabase import SupabaseGateway, get_gateway
from app.schemas.users import (
    MessageResponse,
    PasswordReset,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from app.services.users_service import UsersService

router = APIRouter(
    prefix="/api/admin/users",
    tags=["admin-users"],
    dependencies=[Depends(get_current_admin)],
)


def get_users_service(gateway: SupabaseGateway = Depends(get_gateway)) -> UsersService:
    return UsersService(gateway)


@router.post("", response_model=UserResponse)
def create_user(body: UserCreate, service: UsersService = Depends(get_users_service)):
    return UserResponse(user=service.create_user(body))


@router.get("", response_model=UserListResponse)
def list_users(service: UsersService = Depends(get_users_service)):
    return UserListResponse(users=service.list_users())


@router.put("/{user_id}", response_model=UserResponse)
def update_user(user_id: str, body: UserUpdate, service: UsersService = Depends(get_users_service)):
    return UserResponse(user=service.update_user(user_id, body))


@router.delete("/{user_id}", response_model=MessageResponse, response_model_exclude_none=True)
def delete_user(user_id: str, service: UsersService = Depends(get_users_service)):
    service.delete_user(user_id)
    return MessageResponse(message="Usuario eliminado correctamente")


@router.post("/{user_id}/reset-password", response_model=MessageResponse)
def reset_password(
    user_id: str,
    body: PasswordReset,
    service: UsersService = Depends(get_users_service),
):
    service.reset_password(user_id, body)
    return MessageResponse(message="Contraseña actualizada correctamente")
