from datetime import datetime
from typing import Any, Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

AdminCategory = Literal["auth", "user", "product", "order", "system", "database"]
TargetType = Literal["user", "product", "order", "setting"]


class AdminLog(Document):
    """Append-only audit trail of privileged actions."""
    admin_id: PydanticObjectId
    admin_email: str
    action: str
    category: AdminCategory
    target_type: TargetType | None = None
    target_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "admin_logs"
        indexes = [
            [("created_at", -1)],
            [("admin_id", 1)],
            [("category", 1)],
            [("action", 1)],
        ]
