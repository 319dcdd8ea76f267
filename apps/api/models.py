from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from core.database import Base
from enum import Enum
import uuid
from typing import Optional
from datetime import datetime, timezone

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ClientType(str, Enum):
    """Intake path a client follows."""
    NUTRITION_ONLY = "NUTRITION_ONLY"
    WORKOUT_ONLY = "WORKOUT_ONLY"
    FULL_PROGRAM = "FULL_PROGRAM"
    ATHLETE_PERFORMANCE = "ATHLETE_PERFORMANCE"
    YOUTH = "YOUTH"
    GENERAL_WELLNESS = "GENERAL_WELLNESS"
    SPECIAL_SITUATION = "SPECIAL_SITUATION"


class PacketType(str, Enum):
    INTRO = "INTRO"
    NUTRITION = "NUTRITION"
    WORKOUT = "WORKOUT"
    PERFORMANCE = "PERFORMANCE"
    YOUTH = "YOUTH"
    RECOVERY = "RECOVERY"
    WELLNESS = "WELLNESS"


class PacketStatus(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    READY = "READY"
    FAILED = "FAILED"
    APPROVED = "APPROVED"
    SENT = "SENT"


PACKET_TYPE_LABELS = {
    PacketType.NUTRITION.value: "Nutrition",
    PacketType.WORKOUT.value: "Workout",
    PacketType.PERFORMANCE.value: "Performance",
    PacketType.YOUTH.value: "Youth Training",
    PacketType.RECOVERY.value: "Recovery",
    PacketType.WELLNESS.value: "Wellness",
    PacketType.INTRO.value: "Introduction",
}


def packet_type_label(packet_type: str) -> str:
    return PACKET_TYPE_LABELS.get(packet_type, packet_type)


class User(Base):
    """Login identity. Sessions are issued elsewhere; we only verify them."""
    __tablename__ = "app_user"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    email = Column(Text, unique=True, nullable=False)
    display_name = Column(Text, nullable=True)
    role = Column(Text, default="client", nullable=False)  # 'client', 'coach', 'admin'
    is_active = Column(Boolean, default=True, nullable=False)

    client = relationship("Client", back_populates="user", uselist=False)


class Client(Base):
    """One profile per end user, created on first progress save or submission."""
    __tablename__ = "client"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="SET NULL"), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    full_name = Column(Text, nullable=False, default="")
    email = Column(Text, unique=True, nullable=False)  # lower-cased, trimmed
    phone = Column(Text, nullable=True)
    client_type = Column(Text, nullable=False, default=ClientType.FULL_PROGRAM.value)
    goal = Column(Text, nullable=True)
    # question key -> scalar | list | nested object, already sanitized
    intake_responses = Column(JSONType, nullable=True)
    intake_completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="client")
    packets = relationship("Packet", back_populates="client", passive_deletes=True)
    intake_progress = relationship("IntakeProgress", back_populates="client", uselist=False)


class IntakeProgress(Base):
    """Resumable draft of an in-progress intake (at most one per client)."""
    __tablename__ = "intake_progress"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("client.id", ondelete="CASCADE"), unique=True, nullable=False)
    selected_path = Column(Text, nullable=True)
    current_step = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=True)
    responses = Column(JSONType, nullable=False, default=dict)
    is_complete = Column(Boolean, nullable=False, default=False)
    last_saved_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    client = relationship("Client", back_populates="intake_progress")

    __table_args__ = (
        CheckConstraint("current_step >= 0", name="ck_intake_progress_step_nonnegative"),
        CheckConstraint(
            "total_steps IS NULL OR current_step <= total_steps",
            name="ck_intake_progress_step_within_total",
        ),
    )


class IntakeAnalytics(Base):
    """
    Funnel record for one intake attempt.

    Keyed by classification value, not by client, so funnel measurement
    survives when no client row is ever created. Closed at most once.
    """
    __tablename__ = "intake_analytics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_type = Column(Text, nullable=False)
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    abandoned_at = Column(DateTime(timezone=True), nullable=True)
    completion_time = Column(Integer, nullable=True)  # seconds
    drop_off_step = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "completed_at IS NULL OR abandoned_at IS NULL",
            name="ck_intake_analytics_single_outcome",
        ),
        Index("ix_intake_analytics_type_started", "client_type", "started_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.completed_at is None and self.abandoned_at is None


class PacketTemplate(Base):
    """Section/content-block layout for a packet type (optionally per classification)."""
    __tablename__ = "packet_template"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    packet_type = Column(Text, nullable=False)
    client_type = Column(Text, nullable=True)
    sections = Column(JSONType, nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_packet_template_type_client", "packet_type", "client_type"),
    )


class Packet(Base):
    """
    One generated document owned by a client.

    `revision` is an internal compare-and-swap counter (SQLAlchemy
    version_id_col); `version` is the user-visible content version.
    """
    __tablename__ = "packet"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("client.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default=PacketStatus.PENDING.value)

    content = Column(JSONType, nullable=True)
    doc_url = Column(Text, nullable=True)  # external doc from the generation worker
    pdf_url = Column(Text, nullable=True)  # rendered artifact
    last_error = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False, default=1)
    previous_version_id = Column(Uuid, nullable=True)

    template_id = Column(Uuid, ForeignKey("packet_template.id", ondelete="SET NULL"), nullable=True)
    generated_by = Column(Text, nullable=False, default="SYSTEM")
    generation_method = Column(Text, nullable=False, default="TEMPLATE")

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    revision = Column(Integer, nullable=False)

    client = relationship("Client", back_populates="packets")
    template = relationship("PacketTemplate")

    __mapper_args__ = {"version_id_col": revision}

    __table_args__ = (
        CheckConstraint("retry_count >= 0", name="ck_packet_retry_count_nonnegative"),
        CheckConstraint("version >= 1", name="ck_packet_version_positive"),
        Index("ix_packet_client_type", "client_id", "type"),
        Index("ix_packet_status_updated", "status", "updated_at"),
    )
