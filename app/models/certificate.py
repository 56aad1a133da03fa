from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field

CertificateStatus = Literal["pending_quiz", "quiz_in_progress", "issued", "revoked"]


class Certificate(Document):
    user_id: PydanticObjectId
    user_name: str
    course_title: str
    course_slug: str
    course_level: str | None = None
    course_duration: str | None = None
    course_category: str | None = None
    certificate_number: str
    verification_code: Indexed(str, unique=True)  # stored upper-case
    quiz_score: float | None = None
    total_study_hours: float | None = None
    chapters_completed: int = 0
    total_chapters: int = 0
    status: CertificateStatus = "pending_quiz"
    issued_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "certificates"
        indexes = [[("status", 1)]]
