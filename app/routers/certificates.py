from fastapi import APIRouter

from app.services import certificates as certificates_service

router = APIRouter()


@router.get("/verify/{code}")
async def verify_certificate(code: str):
    """Public: check a certificate by its verification code."""
    return await certificates_service.verify_certificate(code)
