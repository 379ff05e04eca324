from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import EmailStr, Field
from sqlmodel import Session

from jerseynexus.core.errors import send_response
from jerseynexus.db.session import get_session
from jerseynexus.models.user import User, UserRole, UserStatus
from jerseynexus.routers.auth import PasswordChange, get_current_user, require_admin
from jerseynexus.schemas import CamelModel, PartialUpdate
from jerseynexus.serializers import serialize_user
from jerseynexus.services.auth import AuthService
from jerseynexus.services.notifier import manager
from jerseynexus.services.user import UserService

router = APIRouter()

PHONE_PATTERN = r"^[+]?[0-9\s\-()]{10,15}$"


class Address(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class ProfileUpdate(PartialUpdate):
    nullable_fields = frozenset({"phone", "address", "avatar"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[Address] = None
    avatar: Optional[str] = None


class UserCreate(CamelModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    role: UserRole = UserRole.USER


class UserUpdate(PartialUpdate):
    nullable_fields = frozenset({"phone", "address"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    status: Optional[UserStatus] = None
    address: Optional[Address] = None


class RoleUpdate(CamelModel):
    role: UserRole


def get_user_service(session: Session = Depends(get_session)) -> UserService:
    return UserService(session)


def _profile_fields(payload: CamelModel) -> dict:
    fields = payload.model_dump(exclude_unset=True, exclude={"address"})
    if "address" in payload.model_fields_set:
        fields["address"] = payload.address.model_dump(by_alias=True) if payload.address else None
    return fields


@router.get("/profile")
def get_profile(current_user: User = Depends(get_current_user)):
    return send_response("Profile retrieved successfully", {"user": serialize_user(current_user)})


@router.put("/profile")
def update_profile(
    profile_in: ProfileUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    user = AuthService(session).update_profile(current_user, **_profile_fields(profile_in))
    data = serialize_user(user)
    background_tasks.add_task(manager.profile_updated, user.id, data)
    return send_response("Profile updated successfully", {"user": data})


@router.put("/change-password")
def change_password(
    passwords: PasswordChange,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    AuthService(session).change_password(current_user, passwords.current_password, passwords.new_password)
    return send_response("Password changed successfully")


# Admin endpoints

@router.get("/")
def read_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    admin: User = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    users, pagination = service.list_users(page, limit, search, sort_by, sort_order.lower())
    return send_response("Users retrieved successfully", {"users": users, "pagination": pagination})


@router.post("/")
def create_user(
    user_in: UserCreate,
    admin: User = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    user, temporary_password = service.create_user(user_in.name, user_in.email, user_in.role, user_in.phone)
    return send_response(
        "User created successfully",
        {"user": serialize_user(user), "temporaryPassword": temporary_password},
        201,
    )


@router.get("/stats")
def user_stats(admin: User = Depends(require_admin), service: UserService = Depends(get_user_service)):
    return send_response("User statistics retrieved successfully", service.get_stats())


@router.get("/{user_id}")
def read_user(user_id: int, admin: User = Depends(require_admin), service: UserService = Depends(get_user_service)):
    return send_response("User retrieved successfully", {"user": service.get_user_detail(user_id)})


@router.put("/{user_id}")
def update_user(
    user_id: int,
    user_in: UserUpdate,
    admin: User = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    user = service.update_user(user_id, **_profile_fields(user_in))
    return send_response("User updated successfully", {"user": serialize_user(user)})


@router.put("/{user_id}/role")
def update_user_role(
    user_id: int,
    role_in: RoleUpdate,
    admin: User = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    user = service.set_role(user_id, role_in.role, admin)
    return send_response("User role updated successfully", {"user": serialize_user(user)})


@router.delete("/{user_id}")
def delete_user(user_id: int, admin: User = Depends(require_admin), service: UserService = Depends(get_user_service)):
    if service.delete_user(user_id, admin):
        return send_response("User deleted successfully")
    return send_response("User has orders and was deactivated instead of deleted")
