from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import List, Optional
from datetime import datetime, date as date_type
from uuid import UUID

from core.security import ACCESS_TOKEN_EXPIRE_MINUTES


class UserRegister(BaseModel):
    """Schema for user registration."""
    email: EmailStr
    password: str
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    """Schema for user response."""
    id: UUID
    email: str
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    """Schema for token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int = ACCESS_TOKEN_EXPIRE_MINUTES * 60  # seconds
    user: Optional[UserResponse] = None


class ApiTokenCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    expires_in_days: Optional[int] = Field(default=None, gt=0, le=3650)


class ApiTokenUpdate(BaseModel):
    is_active: bool


class WeightCreate(BaseModel):
    """Weight log from the web app, the mobile app or an iOS Shortcut."""
    weight: Optional[float] = None
    date: Optional[date_type] = None
    notes: Optional[str] = None
    body_fat_percentage: Optional[float] = Field(default=None, allow_inf_nan=False)
    muscle_mass: Optional[float] = Field(default=None, allow_inf_nan=False)


class ActivityCreate(BaseModel):
    activity_type: str
    value: float
    unit: Optional[str] = None
    date: Optional[date_type] = None
    notes: Optional[str] = None


class CompetitionCreate(BaseModel):
    name: str
    description: Optional[str] = None
    competition_type: Optional[str] = "weight_loss"
    activity_type: str = "weight"
    scoring_method: str = "total_value"
    ranking_direction: str = "desc"
    duration_days: Optional[int] = None
    max_participants: Optional[int] = None


class JoinCompetitionRequest(BaseModel):
    goal_weight: Optional[float] = None


class JoinByCodeRequest(BaseModel):
    invite_code: str
    goal_weight: Optional[float] = None


class IssueCreate(BaseModel):
    title: str
    description: Optional[str] = None


class NotificationPreferencesUpdate(BaseModel):
    enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    daily_reminders: Optional[bool] = None
    progress_updates: Optional[bool] = None
    competition_start: Optional[bool] = None
    competition_ending: Optional[bool] = None
    competition_completed: Optional[bool] = None
    new_messages: Optional[bool] = None


class NovuSubscriberRequest(BaseModel):
    """Optional overrides; the caller's profile is used for anything left out."""
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class AdminParticipantAdd(BaseModel):
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    starting_weight: Optional[float] = None
    current_weight: Optional[float] = None
    goal_weight: Optional[float] = None
    reason: Optional[str] = None


class AdminParticipantUpdate(BaseModel):
    starting_weight: Optional[float] = None
    current_weight: Optional[float] = None
    goal_weight: Optional[float] = None
    is_active: Optional[bool] = None
    reason: Optional[str] = None


class AdminIssueUpdate(BaseModel):
    status: Optional[str] = None
    resolution_notes: Optional[str] = None


class MessageCreate(BaseModel):
    message: str
    type: str = "message"
    parent_message_id: Optional[UUID] = None
    mentioned_users: List[UUID] = Field(default_factory=list)


class MessageUpdate(BaseModel):
    message: str


class ReactionCreate(BaseModel):
    emoji: str


class MarkMessagesRead(BaseModel):
    message_id: Optional[UUID] = None
