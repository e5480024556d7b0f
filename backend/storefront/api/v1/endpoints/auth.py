"""
Auth API Endpoints.

Registration, login/logout and the user's own profile.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import require_user
from storefront.core.session import (
    SessionState,
    SessionUser,
    get_session,
    get_session_store,
    render,
    rotate_session,
)
from storefront.modules.users.service import UserService, serialize_user, to_session_user

router = APIRouter()


# ==================== Schemas ====================


class RegisterRequest(BaseModel):
    """Create an account."""

    username: str
    email: str
    password: str
    address: str | None = None
    contact: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    username: str
    email: str
    address: str | None = None
    contact: str | None = None
    password: str | None = None


# ==================== Endpoints ====================


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Register a customer account."""
    users = UserService(db)
    user = await users.register(
        username=request.username,
        email=request.email,
        password=request.password,
        address=request.address,
        contact=request.contact,
    )
    session.flash("success", "Registration successful. Please sign in.")
    return render(session, user=serialize_user(user), redirect="/login")


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Sign in and bind the user to the session."""
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Email and Password are required.")

    user = await UserService(db).authenticate(body.email, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    rotate_session(request)
    session.user = to_session_user(user)
    session.flash("success", f"Welcome back, {user.username}!")
    return render(session, user=session.user.model_dump(mode="json"), redirect="/shop")


@router.post("/logout")
async def logout(request: Request) -> dict[str, Any]:
    """Forget the session entirely."""
    await get_session_store().delete(request.state.session_id)
    rotate_session(request)
    request.state.session = SessionState()
    return {"status": "logged_out", "redirect": "/", "messages": []}


@router.get("/profile")
async def get_profile(
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Get the logged-in user's profile."""
    profile = await UserService(db).get_user(user.id)
    if not profile:
        raise HTTPException(status_code=404, detail="Unable to load your profile.")
    return render(session, user=serialize_user(profile))


@router.put("/profile")
async def update_profile(
    request: ProfileUpdateRequest,
    user: SessionUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    session: SessionState = Depends(get_session),
) -> dict[str, Any]:
    """Update the logged-in user's profile."""
    if not request.username or not request.email:
        raise HTTPException(status_code=400, detail="All profile fields are required.")

    users = UserService(db)
    updated = await users.update_profile(user.id, request.model_dump())
    session.user = to_session_user(updated)
    session.flash("success", "Profile updated successfully.")
    return render(session, user=serialize_user(updated))
