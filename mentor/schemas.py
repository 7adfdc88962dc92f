from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class CreateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    exam_target: Optional[str] = None
    preparation_stage: Optional[str] = None
    check_in_time: Optional[str] = None


class CreateUserResponse(BaseModel):
    success: bool = True
    user_id: str


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    exam_target: str
    preparation_stage: str
    check_in_time: str


class ChatRequest(BaseModel):
    user_id: Optional[str] = None
    message: Optional[str] = None


class ChatResponse(BaseModel):
    success: bool = True
    response: str


class HistoryItem(BaseModel):
    sender: str
    content: str
    timestamp: datetime


class CheckInRequest(BaseModel):
    user_id: Optional[str] = None
    study_hours: float = Field(default=0.0, ge=0, le=24)
    subjects: List[str] = Field(default_factory=list)
    mood_rating: Optional[int] = Field(default=None, ge=1, le=10)
    challenges: Optional[str] = None

    @field_validator("subjects", mode="before")
    @classmethod
    def _split_subjects(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value


class CheckInResponse(BaseModel):
    success: bool = True
    total_check_ins: int
    current_streak: int
