"""Audit log for privileged admin actions."""

import re
from datetime import datetime
from typing import Any

from app.core.logging import get_logger
from app.models.admin_log import AdminLog
from app.models.user import User

log = get_logger(__name__)


async def log_admin_action(
    admin: User,
    action: str,
    category: str,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict[str, Any] | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Append to admin_logs. Best-effort: a failed write is logged, never raised."""
    try:
        await AdminLog(
            admin_id=admin.id,
            admin_email=admin.email,
            action=action,
            category=category,
            target_type=target_type,
            target_id=target_id,
            details=details or {},
            ip=ip,
            user_agent=user_agent,
        ).insert()
    except Exception as e:
        log.error("admin_log_failed", action=action, admin_email=admin.email, error=str(e))


async def list_admin_logs(
    skip: int,
    limit: int,
    category: str | None = None,
    admin_email: str | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> tuple[list[AdminLog], int]:
    query: dict[str, Any] = {}
    if category:
        query["category"] = category
    if admin_email:
        query["admin_email"] = admin_email.strip().lower()
    if action:
        query["action"] = {"$regex": re.escape(action), "$options": "i"}
    if start or end:
        query["created_at"] = {}
        if start:
            query["created_at"]["$gte"] = start
        if end:
            query["created_at"]["$lte"] = end
    find = AdminLog.find(query)
    total = await find.count()
    logs = await find.sort(-AdminLog.created_at).skip(skip).limit(limit).to_list()
    return logs, total


def admin_log_dict(entry: AdminLog) -> dict[str, Any]:
    data = entry.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(entry.id)
    return data
