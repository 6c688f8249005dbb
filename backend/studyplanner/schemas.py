# backend/studyplanner/schemas.py
# Field names follow the mobile/web client's JSON contract (camelCase).
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Credentials(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None


class ResetCodeRequest(BaseModel):
    email: Optional[str] = None


class CheckResetCodeRequest(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    code: Optional[str] = None


class Message(BaseModel):
    message: str


class UploadAccepted(BaseModel):
    uploadId: str


class UploadWebhook(BaseModel):
    uploadId: Optional[str] = None
    result: Any = None


class StudyPlanOut(BaseModel):
    id: int
    userId: str
    courses: List[Dict[str, Any]]
    totalCourses: Optional[int] = None
    savedAt: datetime

    @classmethod
    def from_model(cls, plan):
        return cls(
            id=plan.id,
            userId=plan.user_id,
            courses=plan.courses or [],
            totalCourses=plan.total_courses,
            savedAt=plan.saved_at,
        )


class StudyPlanEnvelope(BaseModel):
    studyPlan: StudyPlanOut


class StudyPlanHistory(BaseModel):
    studyPlans: List[StudyPlanOut]
    count: int


class CalendarEntry(BaseModel):
    # copied through from workflow output without reshaping
    course: Any = None
    assessmentName: Any = None
    assessmentType: Any = None
    dueDate: Any = None
    studyPeriod: Any = None
    tasks: Any = Field(default_factory=list)


class CalendarOut(BaseModel):
    entries: List[CalendarEntry]
    count: int
    studyPlanId: int
    savedAt: datetime
