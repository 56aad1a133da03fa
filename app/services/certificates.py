"""Public certificate verification."""

from app.core.exceptions import NotFoundError
from app.models.certificate import Certificate


async def verify_certificate(code: str) -> dict:
    """Lookup is case-insensitive; codes are stored upper-case."""
    certificate = await Certificate.find_one(Certificate.verification_code == code.strip().upper())
    if certificate is None:
        raise NotFoundError("Certificate not found")

    if certificate.status == "revoked":
        return {
            "valid": False,
            "status": "revoked",
            "revoked_at": certificate.revoked_at.isoformat() if certificate.revoked_at else None,
            "reason": certificate.revoked_reason,
        }
    if certificate.status != "issued":
        return {"valid": False, "status": certificate.status}

    return {
        "valid": True,
        "certificate": {
            "student_name": certificate.user_name,
            "course_title": certificate.course_title,
            "course_level": certificate.course_level,
            "course_duration": certificate.course_duration,
            "course_category": certificate.course_category,
            "certificate_number": certificate.certificate_number,
            "issued_at": certificate.issued_at.isoformat() if certificate.issued_at else None,
            "quiz_score": certificate.quiz_score,
            "total_study_hours": certificate.total_study_hours,
            "chapters_completed": certificate.chapters_completed,
            "total_chapters": certificate.total_chapters,
        },
    }
