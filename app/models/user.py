from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed
from pydantic import BaseModel, Field

UserRole = Literal["student", "instructor", "admin", "lead"]
ROLES = ("student", "instructor", "admin", "lead")


class UserSubscription(BaseModel):
    plan: str = "free"  # free | starter | pro | business
    status: str = "active"
    expires_at: datetime | None = None


class UserProfile(BaseModel):
    interests: list[str] = Field(default_factory=list)
    position: str | None = None
    company: str | None = None
    phone: str | None = None


class UserBilling(BaseModel):
    """Checkout autofill; never overwritten once set, except the gateway customer id."""
    cpf_cnpj: str | None = None
    phone: str | None = None
    postal_code: str | None = None
    address: str | None = None
    address_number: str | None = None
    city: str | None = None
    state: str | None = None
    asaas_customer_id: str | None = None


class EnrolledCourse(BaseModel):
    course_id: str | None = None
    course_slug: str
    enrolled_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = True
    source: str = "purchase"


class PODEarnings(BaseModel):
    pending_earnings: float = 0.0
    total_earnings: float = 0.0


class User(Document):
    email: Indexed(str, unique=True)
    name: str = ""
    password_hash: str | None = None
    role: UserRole = "student"
    source: str | None = None
    lead_type: str | None = None
    lead_details: dict[str, Any] = Field(default_factory=dict)
    subscription: UserSubscription = Field(default_factory=UserSubscription)
    profile: UserProfile = Field(default_factory=UserProfile)
    billing: UserBilling = Field(default_factory=UserBilling)
    enrolled_courses: list[EnrolledCourse] = Field(default_factory=list)
    xp: int = 0
    pod_earnings: PODEarnings | None = None
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"

    def public_dict(self) -> dict:
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "subscription": self.subscription.model_dump(mode="json"),
            "profile": self.profile.model_dump(mode="json"),
            "enrolled_courses": [c.course_slug for c in self.enrolled_courses if c.is_active],
            "xp": self.xp,
            "created_at": self.created_at.isoformat(),
        }
