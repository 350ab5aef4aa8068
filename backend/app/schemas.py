# backend/app/schemas.py
from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# -------------------- Auth --------------------

class RegisterIn(BaseModel):
    email: str
    password: str
    full_name: Optional[str] = None
    role: str = "customer"


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    email: str
    role: str
    expires_in: int


class PrincipalOut(BaseModel):
    user_id: str
    role: str
    email: str
    full_name: Optional[str] = None


class ProfileOut(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RoleUpdate(BaseModel):
    role: str


# -------------------- Appraisals --------------------

class AppraisalCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Optional at the schema level so a missing address surfaces as the
    # domain ValidationError (400) rather than a schema error.
    property_address: Optional[str] = None
    property_type: Optional[str] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    land_size: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    additional_notes: Optional[str] = None


class AppraisalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    property_address: Optional[str] = None
    property_type: Optional[str] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    land_size: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    additional_notes: Optional[str] = None


class AppraisalOut(BaseModel):
    id: str
    status: str
    customer_id: str
    agent_id: Optional[str] = None

    property_address: str
    property_type: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    land_size: Optional[float] = None
    additional_notes: Optional[str] = None

    estimated_value_min: Optional[float] = None
    estimated_value_max: Optional[float] = None
    final_value: Optional[float] = None
    completion_notes: Optional[str] = None

    created_at: datetime
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CompleteIn(BaseModel):
    final_value: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    completion_notes: Optional[str] = None


class ValuationIn(BaseModel):
    """Both bounds, or neither (then the range is computed from comparables)."""

    estimated_value_min: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    estimated_value_max: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)

    @model_validator(mode="after")
    def _both_or_neither(self):
        if (self.estimated_value_min is None) != (self.estimated_value_max is None):
            raise ValueError("provide both estimated_value_min and estimated_value_max, or neither")
        return self


class AppraisalEventOut(BaseModel):
    id: int
    appraisal_id: str
    actor_id: Optional[str] = None
    transition: str
    from_status: Optional[str] = None
    to_status: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _parse_payload(cls, data: Any):
        # ORM rows carry payload_json; expose it parsed
        if hasattr(data, "payload_json"):
            raw = getattr(data, "payload_json", None)
            return {
                "id": data.id,
                "appraisal_id": data.appraisal_id,
                "actor_id": data.actor_id,
                "transition": data.transition,
                "from_status": data.from_status,
                "to_status": data.to_status,
                "payload": json.loads(raw) if raw else {},
                "created_at": data.created_at,
            }
        return data


# -------------------- Comparables --------------------

class ComparableCreate(BaseModel):
    address: str
    sale_price: float = Field(gt=0, allow_inf_nan=False)
    property_type: Optional[str] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    land_size: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    sold_date: Optional[date] = None
    distance_km: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)


class ComparableOut(ComparableCreate):
    id: int
    appraisal_id: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# -------------------- Reports --------------------

class ReportCreate(BaseModel):
    preview: bool = False
    branding: Optional[dict[str, Any]] = None
    include_comparables: bool = True
    include_ai_content: bool = False


class GenerateReportRequest(BaseModel):
    """Body of POST /functions/generate-report (camelCase, as web clients send it)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    appraisal_id: Optional[str] = Field(default=None, alias="appraisalId")
    branding_config: Optional[dict[str, Any]] = Field(default=None, alias="brandingConfig")
    customizations: Optional[dict[str, Any]] = None
    preview: bool = False
    include_ai_content: bool = Field(default=False, alias="includeAIContent")
    include_comparables: bool = Field(default=True, alias="includeComparables")

    @field_validator("appraisal_id", mode="before")
    @classmethod
    def _strip(cls, v: Any):
        return v.strip() if isinstance(v, str) else v


class ReportOut(BaseModel):
    id: str
    appraisal_id: str
    kind: str
    content_type: str
    size_bytes: int
    generated_at: datetime
    download_url: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ReportGeneratedOut(BaseModel):
    report_id: str
    download_url: str
    generated_at: datetime
    kind: str
    sections: list[str]


# -------------------- Audit --------------------

class AuditEventOut(BaseModel):
    id: int
    actor_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    before_json: Optional[str] = None
    after_json: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# -------------------- Properties --------------------

class PropertyCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # text rules (lengths, allowed types) are enforced by the service
    address: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    postcode: Optional[str] = None
    property_type: Optional[str] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    land_size: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    floor_area: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    year_built: Optional[int] = None
    description: Optional[str] = None
    listing_type: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    status: Optional[str] = None


class PropertyUpdate(PropertyCreate):
    model_config = ConfigDict(extra="forbid")


class PropertyOut(BaseModel):
    id: str
    owner_id: str
    address: str
    suburb: str
    city: str
    postcode: Optional[str] = None
    property_type: str
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    land_size: Optional[float] = None
    floor_area: Optional[float] = None
    year_built: Optional[int] = None
    description: Optional[str] = None
    listing_type: Optional[str] = None
    price: Optional[float] = None
    status: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PropertyPage(BaseModel):
    items: list[PropertyOut]
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_previous: bool
    model_config = ConfigDict(from_attributes=True)


class PropertyImageOut(BaseModel):
    id: int
    property_id: str
    filename: Optional[str] = None
    content_type: str
    size_bytes: int
    uploaded_by: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# -------------------- Teams --------------------

class TeamIn(BaseModel):
    name: Optional[str] = None


class TeamOut(BaseModel):
    id: str
    name: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TeamMemberIn(BaseModel):
    user_id: str
    role: str = "member"


class TeamMemberRoleIn(BaseModel):
    role: str


class TeamMemberOut(BaseModel):
    id: int
    team_id: str
    user_id: str
    role: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
