import re
from datetime import datetime
from typing import Any

from pymongo.errors import DuplicateKeyError

from app.core.audit import log_admin_action
from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from app.core.logging import get_logger
from app.core.security import create_access_token, hash_password, verify_password
from app.models.user import User, UserProfile

log = get_logger(__name__)

BOT_USER_AGENT = re.compile(r"bot|crawler|spider|headless", re.IGNORECASE)
MIN_PASSWORD_LENGTH = 6


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_bot_user_agent(user_agent: str | None) -> bool:
    return not user_agent or bool(BOT_USER_AGENT.search(user_agent))


def issue_token(user: User, admin: bool = False) -> str:
    settings = get_settings()
    ttl = settings.admin_token_ttl_seconds if admin else settings.user_token_ttl_seconds
    return create_access_token(str(user.id), user.email, user.role, ttl_seconds=ttl)


async def get_user_by_email(email: str) -> User | None:
    return await User.find_one(User.email == normalize_email(email))


async def register_user(
    name: str,
    email: str,
    password: str,
    position: str | None = None,
    interests: str | None = None,
    source: str | None = None,
) -> tuple[User, str]:
    """Create a student account and return it with a 7-day token."""
    email = normalize_email(email)
    if not name.strip() or not email or not password:
        raise BadRequestError("Name, email and password are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    profile = UserProfile(
        interests=[i.strip() for i in (interests or "").split(",") if i.strip()],
        position=position,
    )
    if await get_user_by_email(email):
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        name=name.strip(),
        password_hash=hash_password(password),
        role="student",
        profile=profile,
        source=source or "onboarding",
    )
    try:
        await user.insert()
    except DuplicateKeyError as e:
        raise ConflictError("Email already registered") from e
    log.info("user_registered", user_id=str(user.id), email=user.email)
    return user, issue_token(user)


async def login_user(email: str, password: str) -> tuple[User, str]:
    user = await get_user_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        raise BadRequestError("Invalid email or password")
    user.last_login_at = datetime.utcnow()
    await user.save()
    log.info("user_login", user_id=str(user.id))
    return user, issue_token(user)


async def admin_login(email: str, password: str, ip: str | None = None, user_agent: str | None = None) -> tuple[User, str]:
    """Admin sign-in: 401 on bad credentials, 403 for non-admins, 24h token."""
    if not email or not password:
        raise BadRequestError("Email and password are required")
    user = await get_user_by_email(email)
    if user is None:
        raise UnauthorizedError("Invalid credentials")
    if user.role != "admin":
        raise ForbiddenError("Admins only")
    if not verify_password(password, user.password_hash):
        raise UnauthorizedError("Invalid credentials")
    user.last_login_at = datetime.utcnow()
    await user.save()
    await log_admin_action(
        user,
        "admin_login",
        "auth",
        details={"login_time": user.last_login_at.isoformat()},
        ip=ip,
        user_agent=user_agent,
    )
    return user, issue_token(user, admin=True)


async def change_password(user: User, current_password: str | None, new_password: str) -> None:
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    # Accounts created without a password may set one directly.
    if user.password_hash and not verify_password(current_password or "", user.password_hash):
        raise BadRequestError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    user.updated_at = datetime.utcnow()
    await user.save()
    log.info("password_changed", user_id=str(user.id))


async def email_exists(email: str) -> bool:
    return await get_user_by_email(email) is not None


async def upsert_lead(
    name: str,
    email: str,
    source: str | None = None,
    lead_type: str | None = None,
    details: dict[str, Any] | None = None,
) -> User:
    """Create a lead-role user, or refresh lead data on an existing account without touching its role."""
    email = normalize_email(email)
    if not name.strip() or not email:
        raise BadRequestError("Name and email are required")
    now = datetime.utcnow()
    lead_details = {**(details or {}), "captured_at": now.isoformat()}
    user = await get_user_by_email(email)
    if user is None:
        user = User(
            email=email,
            name=name.strip(),
            role="lead",
            source=source or "lead",
            lead_type=lead_type or "unknown",
            lead_details=lead_details,
        )
        try:
            await user.insert()
        except DuplicateKeyError:
            user = await get_user_by_email(email)
        else:
            log.info("lead_created", email=email, source=user.source)
            return user
    user.name = user.name or name.strip()
    user.lead_type = lead_type or user.lead_type
    user.lead_details = {**user.lead_details, **lead_details}
    user.updated_at = now
    await user.save()
    return user


async def list_users(skip: int, limit: int, role: str | None = None, search: str | None = None) -> tuple[list[User], int]:
    query: dict[str, Any] = {}
    if role:
        query["role"] = role
    if search:
        pattern = re.escape(search.strip())
        query["$or"] = [
            {"email": {"$regex": pattern, "$options": "i"}},
            {"name": {"$regex": pattern, "$options": "i"}},
        ]
    find = User.find(query)
    total = await find.count()
    users = await find.sort(-User.created_at).skip(skip).limit(limit).to_list()
    return users, total


async def update_user_role(admin: User, user_id, role: str, ip: str | None = None, user_agent: str | None = None) -> User:
    user = await User.get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id == admin.id and role != "admin":
        raise BadRequestError("Admins cannot remove their own admin role")
    previous = user.role
    if previous != role:
        user.role = role
        user.updated_at = datetime.utcnow()
        await user.save()
        await log_admin_action(
            admin,
            "user_role_changed",
            "user",
            target_type="user",
            target_id=str(user.id),
            details={"email": user.email, "from": previous, "to": role},
            ip=ip,
            user_agent=user_agent,
        )
    return user
