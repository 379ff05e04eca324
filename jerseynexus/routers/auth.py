import re
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from sqlmodel import Session

from jerseynexus.core.errors import send_response
from jerseynexus.core.security import TokenExpired, create_access_token, decode_access_token
from jerseynexus.db.session import get_session
from jerseynexus.models.user import User, UserStatus
from jerseynexus.schemas import CamelModel, PartialUpdate
from jerseynexus.serializers import serialize_user
from jerseynexus.services.auth import AuthService

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/token", auto_error=False)

PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^\w\s]).{8,}$")


class RegisterRequest(CamelModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: Optional[str] = None
    phone: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(PartialUpdate):
    nullable_fields = frozenset({"avatar"})

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    avatar: Optional[str] = None


class PasswordChange(CamelModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        if not PASSWORD_RULE.match(value):
            raise ValueError(
                "Password must be at least 8 characters and contain upper and lower case letters, a number and a symbol"
            )
        return value


class Token(BaseModel):
    access_token: str
    token_type: str


def get_auth_service(session: Session = Depends(get_session)) -> AuthService:
    return AuthService(session)


def user_from_token(token: str, session: Session) -> User:
    try:
        subject = decode_access_token(token)
    except TokenExpired:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = session.get(User, int(subject)) if subject.isdigit() else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")
    return user


def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    session: Session = Depends(get_session),
) -> User:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_from_token(token, session)


def get_current_user_optional(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    session: Session = Depends(get_session),
) -> Optional[User]:
    if not token:
        return None
    try:
        return user_from_token(token, session)
    except HTTPException:
        return None


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"User role {current_user.role.value} is not authorized to access this route",
        )
    return current_user


@router.get("/")
def auth_index():
    return send_response("Auth API", {
        "endpoints": {
            "register": "POST /api/auth/register",
            "login": "POST /api/auth/login",
            "token": "POST /api/auth/token",
            "me": "GET /api/auth/me",
            "profile": "PUT /api/auth/profile",
            "changePassword": "PUT /api/auth/change-password",
            "logout": "POST /api/auth/logout",
        }
    })


@router.post("/register")
def register(user_in: RegisterRequest, service: AuthService = Depends(get_auth_service)):
    user = service.register_user(user_in.name, user_in.email, user_in.password, phone=user_in.phone)
    token = create_access_token(user.id)
    return send_response("User registered successfully", {"user": serialize_user(user), "token": token}, 201)


@router.post("/login")
def login(credentials: LoginRequest, service: AuthService = Depends(get_auth_service)):
    user, token = service.login(credentials.email, credentials.password)
    return send_response("Login successful", {"user": serialize_user(user), "token": token})


@router.post("/token", response_model=Token)
def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AuthService = Depends(get_auth_service),
):
    """OAuth2 password flow for the interactive docs."""
    _, token = service.login(form_data.username, form_data.password)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
def read_users_me(current_user: User = Depends(get_current_user)):
    return send_response("User retrieved successfully", {"user": serialize_user(current_user)})


@router.put("/profile")
def update_profile(
    profile_in: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    user = service.update_profile(current_user, **profile_in.model_dump(exclude_unset=True))
    return send_response("Profile updated successfully", {"user": serialize_user(user)})


@router.put("/change-password")
def change_password(
    passwords: PasswordChange,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    service.change_password(current_user, passwords.current_password, passwords.new_password)
    return send_response("Password changed successfully")


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    return send_response("Logged out successfully")
