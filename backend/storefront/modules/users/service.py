"""
User Service - Accounts, profiles and the stored-balance wallet.
"""

from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import PermissionDenied, RegistrationError
from storefront.core.security import hash_password, verify_password
from storefront.core.session import SessionUser
from storefront.models.user import User, UserRole

MIN_PASSWORD_LENGTH = 6


class UserService:
    """
    Service for user accounts.

    Usage:
        users = UserService(db_session)
        user = await users.authenticate(email, password)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize user service with database session."""
        self.db = db

    async def get_user(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        query = select(User).where(User.email == email.strip().lower())
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_users(self) -> list[User]:
        query = select(User).order_by(User.created_at.desc(), User.id.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        address: str | None = None,
        contact: str | None = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        """
        Create a new account.

        Raises:
            RegistrationError: Missing fields, short password or taken email
        """
        if not username or not email or not password:
            raise RegistrationError("Please fill in all required details.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise RegistrationError("Password should be at least 6 characters long.")
        if await self.get_by_email(email):
            raise RegistrationError("This email address is already registered.")

        user = User(
            username=username.strip(),
            email=email.strip().lower(),
            hashed_password=hash_password(password),
            address=address,
            contact=contact,
            role=role,
        )
        self.db.add(user)
        await self.db.flush()
        logger.info(f"Registered user {user.id} ({user.email})")
        return user

    async def authenticate(self, email: str, password: str) -> User | None:
        user = await self.get_by_email(email)
        if user and verify_password(password, user.hashed_password):
            return user
        return None

    async def update_profile(
        self,
        user_id: int,
        updates: dict[str, Any],
        allow_role: bool = False,
    ) -> User:
        """
        Update profile fields and optionally role and wallet (admin edits).

        Raises:
            RegistrationError: Short password or email used by another account
        """
        user = await self.get_user(user_id)
        if user is None:
            raise RegistrationError("User not found.")

        email = updates.get("email")
        if email:
            existing = await self.get_by_email(email)
            if existing and existing.id != user.id:
                raise RegistrationError("This email is already used by another account.")
            user.email = email.strip().lower()

        for field in ("username", "address", "contact"):
            if updates.get(field) is not None:
                setattr(user, field, updates[field])

        password = updates.get("password")
        if password:
            if len(password) < MIN_PASSWORD_LENGTH:
                raise RegistrationError("Password should be at least 6 characters long.")
            user.hashed_password = hash_password(password)

        if allow_role:
            if updates.get("role") is not None:
                user.role = UserRole(updates["role"])
            if updates.get("wallet_balance") is not None:
                user.wallet_balance = Decimal(updates["wallet_balance"])

        await self.db.flush()
        return user

    async def admin_update(self, acting_user_id: int, target_id: int, updates: dict[str, Any]) -> User:
        """Admin edit of another account; other admins are off limits."""
        target = await self.get_user(target_id)
        if target is None:
            raise RegistrationError("User not found.")
        if target.is_admin and target.id != acting_user_id:
            raise PermissionDenied("Admins cannot edit other admin accounts.")
        return await self.update_profile(target_id, updates, allow_role=True)

    async def deduct_wallet_balance(self, user_id: int, amount: Decimal) -> bool:
        """
        Atomically take ``amount`` from the wallet.

        Returns:
            False if the balance does not cover the amount
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.wallet_balance >= amount)
            .values(wallet_balance=User.wallet_balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def refresh_session_user(self, user_id: int) -> SessionUser | None:
        """Reload the cached identity, e.g. after a wallet change."""
        query = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        user = result.scalar_one_or_none()
        return to_session_user(user) if user else None


def to_session_user(user: User) -> SessionUser:
    return SessionUser(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role.value,
        wallet_balance=user.wallet_balance,
    )


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "address": user.address,
        "contact": user.contact,
        "role": user.role.value,
        "wallet_balance": float(user.wallet_balance),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
