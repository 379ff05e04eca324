from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlmodel import Session, select

from jerseynexus.core.log import log_auth_event
from jerseynexus.core.security import create_access_token, hash_password, verify_password
from jerseynexus.models.user import User, UserStatus


class AuthService:
    def __init__(self, session: Session):
        self.session = session

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email.strip().lower())).first()

    def register_user(self, name: str, email: str, password: str, phone: Optional[str] = None) -> User:
        email = email.strip().lower()
        if self.get_user_by_email(email):
            raise HTTPException(status_code=400, detail="User already exists with this email")

        user = User(
            name=name.strip(),
            email=email,
            phone=phone,
            password_hash=hash_password(password),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        log_auth_event("register", email)
        return user

    def authenticate_user(self, email: str, password: str) -> tuple[Optional[User], Optional[str]]:
        """Returns (user, None) or (None, error_message)."""
        user = self.get_user_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            log_auth_event("login", email, success=False)
            return None, "Invalid email or password"
        return user, None

    def login(self, email: str, password: str) -> tuple[User, str]:
        user, error_message = self.authenticate_user(email, password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=error_message,
                headers={"WWW-Authenticate": "Bearer"},
            )
        if user.status != UserStatus.ACTIVE:
            log_auth_event("login", user.email, success=False)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive. Please contact support.")
        log_auth_event("login", user.email)
        return user, create_access_token(user.id)

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
        user.password_hash = hash_password(new_password)
        user.updated_at = datetime.utcnow()
        self.session.add(user)
        self.session.commit()
        log_auth_event("change-password", user.email)

    def update_profile(self, user: User, **fields) -> User:
        email = fields.get("email")
        if email is not None:
            email = email.strip().lower()
            existing = self.get_user_by_email(email)
            if existing and existing.id != user.id:
                raise HTTPException(status_code=400, detail="Email is already in use")
            fields["email"] = email

        for key, value in fields.items():
            setattr(user, key, value)
        user.updated_at = datetime.utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user
