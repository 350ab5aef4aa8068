# backend/app/models.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    CheckConstraint,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def new_id() -> str:
    return str(uuid.uuid4())


# -----------------------------
# Identity
# -----------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="customer")  # customer|agent|admin
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Teams
# -----------------------------
class Team(Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    members: Mapped[List["TeamMember"]] = relationship(
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.created_at",
    )


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    team_id: Mapped[str] = mapped_column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")  # member|admin

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    team: Mapped["Team"] = relationship(back_populates="members")


# -----------------------------
# Properties
# -----------------------------
class Property(Base):
    """A customer's property record, independent of any appraisal request."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)

    address: Mapped[str] = mapped_column(String(255), nullable=False)
    suburb: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    postcode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    property_type: Mapped[str] = mapped_column(String(30), nullable=False)  # house|apartment|townhouse|land|commercial|other

    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    land_size: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    floor_area: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    listing_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # sale|rent|not_listed
    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|pending|sold|rented|inactive

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    images: Mapped[List["PropertyImage"]] = relationship(
        back_populates="property",
        cascade="all, delete-orphan",
        order_by="PropertyImage.id",
    )


class PropertyImage(Base):
    """Image metadata; the bytes live in artifact storage under storage_key."""

    __tablename__ = "property_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("properties.id"), nullable=False, index=True)

    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content_type: Mapped[str] = mapped_column(String(80), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="images")


# -----------------------------
# Appraisals
# -----------------------------
class Appraisal(Base):
    __tablename__ = "appraisals"
    __table_args__ = (
        # agent_id is set exactly when the appraisal has been claimed
        CheckConstraint(
            "(agent_id IS NULL AND status IN ('draft','processing','published','cancelled')) OR "
            "(agent_id IS NOT NULL AND status IN ('claimed','completed'))",
            name="ck_appraisals_agent_matches_status",
        ),
        Index("ix_appraisals_status_agent", "status", "agent_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)

    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    agent_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True, index=True)

    property_address: Mapped[str] = mapped_column(String(255), nullable=False)
    property_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    land_size: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    additional_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    estimated_value_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    estimated_value_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    final_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    comparables: Mapped[List["ComparableProperty"]] = relationship(
        back_populates="appraisal",
        order_by="ComparableProperty.id",
    )


class ComparableProperty(Base):
    """Reference sale used for valuation support. Insert and query only."""

    __tablename__ = "comparable_properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    appraisal_id: Mapped[str] = mapped_column(String(36), ForeignKey("appraisals.id"), nullable=False, index=True)

    address: Mapped[str] = mapped_column(String(255), nullable=False)
    sale_price: Mapped[float] = mapped_column(Float, nullable=False)
    property_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    land_size: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sold_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    appraisal: Mapped["Appraisal"] = relationship(back_populates="comparables")


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    appraisal_id: Mapped[str] = mapped_column(String(36), ForeignKey("appraisals.id"), nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="final")  # final|preview
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(80), nullable=False, default="application/pdf")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    generated_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Audit / event log
# -----------------------------
class AppraisalEvent(Base):
    __tablename__ = "appraisal_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    appraisal_id: Mapped[str] = mapped_column(String(36), ForeignKey("appraisals.id"), nullable=False, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)

    transition: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_events_entity", "entity_type", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
