from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, ForeignKey, Text, String, Index, UniqueConstraint, CheckConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
from core.time_utils import utcnow
import uuid

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


COMPETITION_TYPES = ("weight_loss", "weight_gain", "body_fat_loss", "muscle_gain")
COMPETITION_STATUSES = ("pending", "started", "completed", "cancelled")
SCORING_METHODS = ("change_percentage", "total_value", "cumulative", "best_value", "average_value")
ACTIVITY_TYPES = ("weight", "steps", "distance", "calories", "custom")
ISSUE_STATUSES = ("open", "in_progress", "resolved")
MESSAGE_TYPES = ("message", "announcement", "system")
ADMIN_ROLES = ("admin", "super_admin")


class User(Base):
    __tablename__ = "app_user"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=True)
    role = Column(Text, default="user", nullable=False)  # 'user', 'admin', 'super_admin'
    display_name = Column(Text, nullable=True)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    is_blocked = Column(Boolean, default=False, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def name(self) -> str:
        if self.display_name:
            return self.display_name
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or (self.email.split("@")[0] if self.email else "Athlete")


class ApiToken(Base):
    """
    Personal bearer credential for the mobile / Shortcuts weight endpoint.

    Only the sha256 digest of the token is stored; the raw value is returned
    once at creation time.
    """

    __tablename__ = "api_token"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True)
    token_preview = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    user = relationship("User")


class WeightEntry(Base):
    __tablename__ = "weight_entry"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    weight = Column(Float, nullable=False)
    body_fat_percentage = Column(Float, nullable=True)
    muscle_mass = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("weight > 0", name="ck_weight_entry_weight_positive"),
        Index("ix_weight_entry_user_date", "user_id", "date"),
    )


class ActivityEntry(Base):
    """A dated numeric measurement (weight, steps, distance...). Soft-deleted via deleted_at."""

    __tablename__ = "activity_entry"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(Text, nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(Text, nullable=True)
    source = Column(Text, default="manual", nullable=False)  # manual | api | import
    notes = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_activity_entry_user_type_date", "user_id", "activity_type", "date"),
    )


class Competition(Base):
    """
    A time-boxed contest.

    Lifecycle: pending (created) -> started (start job stamps dates) ->
    completed (finalize job after end_date). cancelled is terminal.
    """

    __tablename__ = "competition"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    competition_type = Column(Text, nullable=True, default="weight_loss")
    status = Column(Text, nullable=False, default="pending", index=True)
    activity_type = Column(Text, nullable=False, default="weight")
    scoring_method = Column(Text, nullable=False, default="total_value")
    ranking_direction = Column(Text, nullable=False, default="desc")
    duration_days = Column(Integer, nullable=False, default=30)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True, index=True)
    max_participants = Column(Integer, nullable=True)
    invite_code = Column(String(16), nullable=False, unique=True)
    created_by = Column(Uuid, ForeignKey("app_user.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    participants = relationship("CompetitionParticipant", back_populates="competition")

    __table_args__ = (
        CheckConstraint("duration_days > 0", name="ck_competition_duration_positive"),
        CheckConstraint("ranking_direction IN ('asc', 'desc')", name="ck_competition_ranking_direction"),
    )

    @property
    def is_weight_based(self) -> bool:
        return (self.activity_type or "weight") == "weight"


class CompetitionParticipant(Base):
    """
    A user's membership in one competition.

    weight_change is starting - current (positive means weight lost) and
    weight_change_percentage is weight_change / starting * 100.
    """

    __tablename__ = "competition_participant"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    starting_weight = Column(Float, nullable=True)
    current_weight = Column(Float, nullable=True)
    goal_weight = Column(Float, nullable=True)
    weight_change = Column(Float, nullable=True)
    weight_change_percentage = Column(Float, nullable=True)

    # Baseline / latest for non-weight activity competitions
    starting_value = Column(Float, nullable=True)
    current_value = Column(Float, nullable=True)

    rank = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_entry_date = Column(Date, nullable=True)
    total_entries = Column(Integer, default=0, nullable=False)

    competition = relationship("Competition", back_populates="participants")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="uq_competition_participant"),
    )


class CompetitionStanding(Base):
    """
    Immutable leaderboard snapshot row.

    Each recalculation flips the previous set to is_current = false and
    inserts a new current set.
    """

    __tablename__ = "competition_standing"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(Uuid, ForeignKey("competition_participant.id", ondelete="CASCADE"), nullable=False)
    rank = Column(Integer, nullable=False)
    weight_change = Column(Float, nullable=True)
    weight_change_percentage = Column(Float, nullable=True)
    last_weight_entry = Column(Float, nullable=True)
    calculated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_current = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_competition_standing_current", "competition_id", "is_current"),
    )


class CalculationResult(Base):
    """Denormalized score/rank/percentile per subject, seeded at start and refreshed on recalculation."""

    __tablename__ = "calculation_result"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="CASCADE"), nullable=False)
    subject_type = Column(Text, nullable=False, default="participant")
    subject_id = Column(Uuid, nullable=False)
    calculation_method = Column(Text, nullable=True)
    calculated_score = Column(Float, nullable=False, default=0)
    rank = Column(Integer, nullable=True)
    percentile = Column(Float, nullable=True)
    activity_entries_count = Column(Integer, nullable=False, default=0)
    days_active = Column(Integer, nullable=False, default=0)
    calculation_data = Column(JSONType, nullable=False, default=dict)
    calculation_version = Column(Text, nullable=True)
    calculated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("competition_id", "subject_type", "subject_id", name="uq_calculation_result_subject"),
    )


class Notification(Base):
    """
    In-app message with push-delivery bookkeeping.

    push_sent_at IS NULL means still queued for the push drain. Items that
    are skipped by preferences are also stamped push_sent_at so they leave
    the queue.
    """

    __tablename__ = "notification"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    action_url = Column(Text, nullable=True)
    data = Column(JSONType, nullable=False, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    push_sent_at = Column(DateTime(timezone=True), nullable=True)
    push_failed_at = Column(DateTime(timezone=True), nullable=True)
    push_attempts = Column(Integer, default=0, nullable=False)
    push_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_notification_push_queue", "push_sent_at", "is_read", "created_at"),
    )


class NotificationPreference(Base):
    __tablename__ = "notification_preference"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, unique=True)
    enabled = Column(Boolean, default=True, nullable=False)
    push_enabled = Column(Boolean, default=True, nullable=False)
    daily_reminders = Column(Boolean, default=True, nullable=False)
    progress_updates = Column(Boolean, default=True, nullable=False)
    competition_start = Column(Boolean, default=True, nullable=False)
    competition_ending = Column(Boolean, default=True, nullable=False)
    competition_completed = Column(Boolean, default=True, nullable=False)
    new_messages = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)


class CompetitionIssue(Base):
    """A participant-reported problem with a competition, triaged by admins."""

    __tablename__ = "competition_issue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="CASCADE"), nullable=False, index=True)
    reported_by = Column(Uuid, ForeignKey("app_user.id"), nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="open", index=True)  # open | in_progress | resolved
    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(Uuid, ForeignKey("app_user.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    competition = relationship("Competition")


class AdminAuditEvent(Base):
    """
    Append-only audit log for admin actions.

    - write-only from the application (no update/delete in code paths)
    - bounded payload (no secrets; minimal PII)
    """

    __tablename__ = "admin_audit_event"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    actor_user_id = Column(Uuid, ForeignKey("app_user.id"), nullable=False, index=True)
    action = Column(Text, nullable=False, index=True)  # e.g., participant.add | issue.update

    target_user_id = Column(Uuid, ForeignKey("app_user.id"), nullable=True)
    target_competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="SET NULL"), nullable=True)
    reason = Column(Text, nullable=True)

    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)

    payload = Column(JSONType, nullable=False, default=dict)


class CompetitionMessage(Base):
    """
    A post on a competition's message board. Soft-deleted via deleted_at.

    parent_message_id makes it a reply; type is message, announcement
    (creator/admin only) or system.
    """

    __tablename__ = "competition_message"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_message_id = Column(Uuid, ForeignKey("competition_message.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(Text, nullable=False, default="message")
    message = Column(Text, nullable=False)
    mentioned_users = Column(JSONType, nullable=False, default=list)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    author = relationship("User")

    __table_args__ = (
        Index("ix_competition_message_board", "competition_id", "created_at"),
    )


class MessageReaction(Base):
    __tablename__ = "message_reaction"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid, ForeignKey("competition_message.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reaction"),
    )


class MessageReadReceipt(Base):
    """How far one user has read one competition's board. Later messages from others are unread."""

    __tablename__ = "message_read_receipt"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    competition_id = Column(Uuid, ForeignKey("competition.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    last_read_message_id = Column(Uuid, ForeignKey("competition_message.id", ondelete="SET NULL"), nullable=True)
    last_read_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True)

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="uq_message_read_receipt"),
    )
