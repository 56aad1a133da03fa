from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import get_current_user, rate_limited, reject_bots
from app.models.user import User
from app.services import users as user_service

router = APIRouter()


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    role: str | None = None  # job title, stored on the profile
    interest: str | None = None  # comma-separated
    source: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str | None = None
    new_password: str


@router.post("/register", dependencies=[Depends(reject_bots), Depends(rate_limited("auth:register"))])
async def register(body: RegisterRequest):
    """Create a student account; returns a 7-day bearer token."""
    user, token = await user_service.register_user(
        body.name,
        body.email,
        body.password,
        position=body.role,
        interests=body.interest,
        source=body.source,
    )
    return {"success": True, "token": token, "user": user.public_dict()}


@router.post("/login", dependencies=[Depends(rate_limited("auth:login"))])
async def login(body: LoginRequest):
    user, token = await user_service.login_user(body.email, body.password)
    return {"token": token, "user": user.public_dict()}


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Return current user. Requires bearer token."""
    return {"user": user.public_dict()}


@router.post("/change-password")
async def change_password(body: ChangePasswordRequest, user: User = Depends(get_current_user)):
    await user_service.change_password(user, body.current_password, body.new_password)
    return {"success": True}


@router.get("/check-email")
async def check_email(email: str):
    """Only reports whether the address is taken."""
    return {"exists": await user_service.email_exists(email)}
