import secrets
import string
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import func, or_
from sqlmodel import Session, select

from jerseynexus.core.security import hash_password
from jerseynexus.models import Blog, CartItem, Order, Payment, Review, User, UserRole, UserStatus
from jerseynexus.serializers import paginate, serialize_order, serialize_review, serialize_user

USER_SORT_FIELDS = {"createdAt": User.created_at, "name": User.name, "email": User.email, "role": User.role}


def generate_temporary_password(length: int = 12) -> str:
    # One of each character class so it passes the change-password rule
    chars = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice("!@#$%&*"),
    ]
    alphabet = string.ascii_letters + string.digits
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


class UserService:
    def __init__(self, session: Session):
        self.session = session

    def get_user_by_id(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    def _count(self, model, user_column, user_id: int) -> int:
        return self.session.exec(select(func.count()).select_from(model).where(user_column == user_id)).one()

    def list_users(self, page: int = 1, limit: int = 10, search: Optional[str] = None,
                   sort_by: str = "createdAt", sort_order: str = "desc"):
        statement = select(User)
        if search:
            pattern = f"%{search}%"
            statement = statement.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

        column = USER_SORT_FIELDS.get(sort_by, User.created_at)
        statement = statement.order_by(column.asc() if sort_order == "asc" else column.desc())

        users, pagination = paginate(self.session, statement, page, limit)
        data = [
            serialize_user(
                user,
                _count={
                    "orders": self._count(Order, Order.user_id, user.id),
                    "reviews": self._count(Review, Review.user_id, user.id),
                    "blogs": self._count(Blog, Blog.author_id, user.id),
                },
            )
            for user in users
        ]
        return data, pagination

    def create_user(self, name: str, email: str, role: UserRole = UserRole.USER,
                    phone: Optional[str] = None) -> tuple[User, str]:
        email = email.strip().lower()
        if self.session.exec(select(User).where(User.email == email)).first():
            raise HTTPException(status_code=400, detail="User already exists with this email")

        temporary_password = generate_temporary_password()
        user = User(name=name, email=email, phone=phone, role=role, password_hash=hash_password(temporary_password))
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"admin created user {user.email} ({user.role.value})")
        return user, temporary_password

    def get_stats(self) -> dict:
        now = datetime.utcnow()
        total_users = self.session.exec(select(func.count()).select_from(User)).one()
        admin_users = self.session.exec(
            select(func.count()).select_from(User).where(User.role == UserRole.ADMIN)
        ).one()
        recent_users = self.session.exec(
            select(func.count()).select_from(User).where(User.created_at >= now - timedelta(days=30))
        ).one()

        # Sign-ups per month for the last 12 months, oldest first
        months = OrderedDict()
        year, month = now.year, now.month
        for _ in range(12):
            months[f"{year:04d}-{month:02d}"] = 0
            month -= 1
            if month == 0:
                year, month = year - 1, 12
        months = OrderedDict(reversed(list(months.items())))
        window_start = datetime.strptime(next(iter(months)), "%Y-%m")
        for created_at in self.session.exec(select(User.created_at).where(User.created_at >= window_start)).all():
            key = created_at.strftime("%Y-%m")
            if key in months:
                months[key] += 1

        return {
            "totalUsers": total_users,
            "adminUsers": admin_users,
            "regularUsers": total_users - admin_users,
            "recentUsers": recent_users,
            "monthlyStats": [{"month": key, "count": count} for key, count in months.items()],
        }

    def get_user_detail(self, user_id: int) -> dict:
        user = self.get_user_by_id(user_id)
        orders = self.session.exec(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc()).limit(5)
        ).all()
        reviews = self.session.exec(
            select(Review).where(Review.user_id == user_id).order_by(Review.created_at.desc()).limit(5)
        ).all()
        return serialize_user(
            user,
            orders=[serialize_order(order) for order in orders],
            reviews=[serialize_review(review) for review in reviews],
        )

    def update_user(self, user_id: int, **fields) -> User:
        user = self.get_user_by_id(user_id)
        email = fields.get("email")
        if email:
            email = email.strip().lower()
            existing = self.session.exec(select(User).where(User.email == email)).first()
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

    def set_role(self, user_id: int, role: UserRole, acting_user: User) -> User:
        if user_id == acting_user.id:
            raise HTTPException(status_code=400, detail="You cannot change your own role")
        return self.update_user(user_id, role=role)

    def delete_user(self, user_id: int, acting_user: User) -> bool:
        """Delete a user. Users with orders are deactivated instead; returns True when deleted."""
        if user_id == acting_user.id:
            raise HTTPException(status_code=400, detail="You cannot delete your own account")
        user = self.get_user_by_id(user_id)

        if self._count(Order, Order.user_id, user.id):
            user.status = UserStatus.INACTIVE
            user.updated_at = datetime.utcnow()
            self.session.add(user)
            self.session.commit()
            logger.info(f"user {user.email} has orders, deactivated instead of deleted")
            return False

        for item in self.session.exec(select(CartItem).where(CartItem.user_id == user.id)).all():
            self.session.delete(item)
        # Without orders these are only abandoned gateway attempts
        for payment in self.session.exec(select(Payment).where(Payment.user_id == user.id)).all():
            self.session.delete(payment)
        for review in self.session.exec(select(Review).where(Review.user_id == user.id)).all():
            self.session.delete(review)
        for blog in self.session.exec(select(Blog).where(Blog.author_id == user.id)).all():
            blog.author_id = acting_user.id
            self.session.add(blog)
        self.session.delete(user)
        self.session.commit()
        logger.info(f"user {user.email} deleted by {acting_user.email}")
        return True
