"""SQLAlchemy ORM models for spot handoff.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps; values are always written in UTC
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from spot_handoff.infra.database import Base


# ---------------------------------------------------------------------------
# Spot
# ---------------------------------------------------------------------------


class Spot(Base):
    """A curbside spot posted by its owner for handoff.

    ``version`` is the compare-and-set token: every accepted write bumps it,
    and every transition is an UPDATE conditioned on the expected status and
    version. Owner and reserver ids are opaque references to the identity
    provider; no user table lives here.
    """

    __tablename__ = "spots"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Location
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    location_verified = Column(Boolean, nullable=False, default=False)

    # Commercial terms
    price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    category = Column(String(20), nullable=False)  # SpotCategory

    # Timing
    available_at = Column(DateTime(timezone=True), nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Ownership
    owner_id = Column(String(128), nullable=False, index=True)
    reserved_by = Column(String(128), nullable=True, index=True)

    # Status
    status = Column(String(20), nullable=False, default="available", index=True)
    version = Column(Integer, nullable=False, default=1)

    # Audit
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now())
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    handoff_count = Column(Integer, nullable=False, default=0)


class SpotEvent(Base):
    """Audit trail: one row per accepted spot transition."""

    __tablename__ = "spot_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    spot_id = Column(String(36), ForeignKey("spots.id"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)  # SpotEventType
    actor = Column(String(20), nullable=False)  # SpotActor
    actor_id = Column(String(128), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now())


class Conversation(Base):
    """Message thread opened between owner and reserver on reservation.

    Messages themselves live with the messaging service.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("owner_id", "reserver_id", "spot_id", name="uq_conversation_participants"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    spot_id = Column(String(36), ForeignKey("spots.id"), nullable=False, index=True)
    owner_id = Column(String(128), nullable=False)
    reserver_id = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now())
