# backend/app/services/property_service.py
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Protocol, Sequence

from sqlalchemy import desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.errors import Forbidden, NotFound, UpstreamFailure, ValidationError
from ..domain.lifecycle import Actor, Role
from ..models import Property, PropertyImage
from .team_service import TeamService

log = logging.getLogger(__name__)

PROPERTY_TYPES = ("house", "apartment", "townhouse", "land", "commercial", "other")
LISTING_TYPES = ("sale", "rent", "not_listed")
PROPERTY_STATUSES = ("active", "pending", "sold", "rented", "inactive")

PROPERTY_FIELDS = (
    "address",
    "suburb",
    "city",
    "postcode",
    "property_type",
    "bedrooms",
    "bathrooms",
    "land_size",
    "floor_area",
    "year_built",
    "description",
    "listing_type",
    "price",
    "status",
)
_MIN_TEXT = {"address": 3, "suburb": 2, "city": 2}
_NUMERIC = ("bedrooms", "bathrooms", "land_size", "floor_area", "price")

IMAGE_TYPES = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp", "image/gif": "gif"}


class BlobStorage(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


def property_dict(row: Property) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for col in Property.__table__.columns:
        v = getattr(row, col.name)
        out[col.name] = v.isoformat() if isinstance(v, (datetime, date)) else v
    return out


def image_key(property_id: str, extension: str) -> str:
    return f"properties/{property_id}/{uuid.uuid4().hex}.{extension}"


@dataclass(frozen=True)
class Page:
    items: Sequence[Property]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size)) if self.page_size else 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


class PropertyService:
    """
    Owner-scoped property records with image uploads.

    Owners and platform admins edit; anyone sharing a team with the owner
    may read. Image bytes live in blob storage, the rows only hold metadata.
    """

    def __init__(self, db: Session, *, storage: Optional[BlobStorage] = None):
        self.db = db
        self.storage = storage
        self.teams = TeamService(db)

    # ---- visibility ----
    def get(self, property_id: str) -> Property:
        row = self.db.get(Property, str(property_id))
        if row is None:
            raise NotFound("property not found", details={"property_id": str(property_id)})
        return row

    def _visible_owners(self, actor: Actor) -> Optional[set[str]]:
        # None means unrestricted
        if actor.role == Role.admin:
            return None
        return self.teams.teammate_ids(actor.id)

    def can_view(self, actor: Actor, row: Property) -> bool:
        owners = self._visible_owners(actor)
        return owners is None or row.owner_id in owners

    def get_for_actor(self, actor: Actor, property_id: str) -> Property:
        row = self.get(property_id)
        if not self.can_view(actor, row):
            raise Forbidden("property not visible to this actor")
        return row

    def _editable(self, actor: Actor, property_id: str) -> Property:
        row = self.get(property_id)
        if actor.role != Role.admin and row.owner_id != actor.id:
            log.warning("property edit rejected", extra={"user_id": actor.id, "role": actor.role.value})
            raise Forbidden("only the owner edits a property")
        return row

    # ---- queries ----
    def list_for_actor(self, actor: Actor, *, page: int = 1, page_size: Optional[int] = None) -> Page:
        q = select(Property)
        if actor.role != Role.admin:
            q = q.where(Property.owner_id == actor.id)
        return self._paginate(q, page=page, page_size=page_size)

    def search(self, actor: Actor, term: Optional[str], *, page: int = 1, page_size: Optional[int] = None) -> Page:
        t = (term or "").strip()
        if len(t) < 2:
            raise ValidationError("search term must be at least 2 characters", details={"field": "q"})
        q = select(Property).where(
            or_(
                Property.address.icontains(t, autoescape=True),
                Property.suburb.icontains(t, autoescape=True),
                Property.city.icontains(t, autoescape=True),
            )
        )
        if actor.role != Role.admin:
            q = q.where(Property.owner_id == actor.id)
        return self._paginate(q, page=page, page_size=page_size)

    def similar(self, actor: Actor, property_id: str, *, limit: int = 3) -> Sequence[Property]:
        """Same suburb and type, newest first, limited to properties the actor may see."""
        row = self.get_for_actor(actor, property_id)
        q = (
            select(Property)
            .where(
                Property.suburb == row.suburb,
                Property.property_type == row.property_type,
                Property.id != row.id,
            )
            .order_by(desc(Property.created_at), desc(Property.id))
            .limit(int(limit))
        )
        owners = self._visible_owners(actor)
        if owners is not None:
            q = q.where(Property.owner_id.in_(owners))
        return self.db.scalars(q).all()

    def team_properties(self, actor: Actor, team_id: str) -> Sequence[Property]:
        self.teams.get_for_actor(actor, team_id)
        members = self.teams.member_ids(team_id)
        q = (
            select(Property)
            .where(Property.owner_id.in_(members))
            .order_by(desc(Property.created_at), desc(Property.id))
        )
        return self.db.scalars(q).all()

    def _paginate(self, q, *, page: int, page_size: Optional[int]) -> Page:
        size = int(page_size or settings.property_page_size)
        if page < 1 or size < 1:
            raise ValidationError("page and page_size must be positive")
        total = int(self.db.scalar(select(func.count()).select_from(q.subquery())) or 0)
        rows = self.db.scalars(
            q.order_by(desc(Property.created_at), desc(Property.id)).offset((page - 1) * size).limit(size)
        ).all()
        return Page(items=rows, page=page, page_size=size, total=total)

    # ---- writes ----
    def create(self, actor: Actor, **fields: Any) -> Property:
        clean = _clean(fields, partial=False)
        now = datetime.utcnow()
        clean.setdefault("status", "active")
        row = Property(owner_id=actor.id, created_at=now, updated_at=now, **clean)
        self.db.add(row)
        self.db.flush()
        audit_write(
            self.db,
            actor_id=actor.id,
            action="property_created",
            entity_type="property",
            entity_id=row.id,
            after=property_dict(row),
        )
        self.db.commit()
        log.info("property created", extra={"user_id": actor.id})
        return row

    def update(self, actor: Actor, property_id: str, **fields: Any) -> Property:
        row = self._editable(actor, property_id)
        clean = _clean(fields, partial=True)
        if not clean:
            return row
        before = property_dict(row)
        for k, v in clean.items():
            setattr(row, k, v)
        row.updated_at = datetime.utcnow()
        audit_write(
            self.db,
            actor_id=actor.id,
            action="property_updated",
            entity_type="property",
            entity_id=row.id,
            before=before,
            after=property_dict(row),
        )
        self.db.commit()
        return row

    def delete(self, actor: Actor, property_id: str) -> None:
        row = self._editable(actor, property_id)
        before = property_dict(row)
        keys = [img.storage_key for img in row.images]
        self.db.delete(row)
        audit_write(
            self.db,
            actor_id=actor.id,
            action="property_deleted",
            entity_type="property",
            entity_id=before["id"],
            before=before,
        )
        self.db.commit()
        # blobs go only after the rows pointing at them are gone
        if self.storage is not None:
            for key in keys:
                self.storage.delete(key)

    # ---- images ----
    def add_image(
        self,
        actor: Actor,
        property_id: str,
        *,
        data: bytes,
        content_type: Optional[str],
        filename: Optional[str] = None,
    ) -> PropertyImage:
        row = self._editable(actor, property_id)
        ctype = (content_type or "").split(";")[0].strip().lower()
        ext = IMAGE_TYPES.get(ctype)
        if ext is None:
            raise ValidationError(
                f"unsupported image type: {content_type}",
                details={"field": "file", "allowed": sorted(IMAGE_TYPES)},
            )
        if not data:
            raise ValidationError("image file is empty", details={"field": "file"})
        if len(data) > settings.property_image_max_bytes:
            raise ValidationError(
                "image file is too large",
                details={"field": "file", "max_bytes": settings.property_image_max_bytes},
            )

        storage = self._storage()
        key = image_key(row.id, ext)
        storage.put(key, data, ctype)
        try:
            img = PropertyImage(
                property_id=row.id,
                storage_key=key,
                filename=(filename or "")[:255] or None,
                content_type=ctype,
                size_bytes=len(data),
                uploaded_by=actor.id,
                created_at=datetime.utcnow(),
            )
            self.db.add(img)
            self.db.flush()
            audit_write(
                self.db,
                actor_id=actor.id,
                action="property_image_added",
                entity_type="property",
                entity_id=row.id,
                after={"image_id": img.id, "storage_key": key, "size_bytes": len(data)},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            storage.delete(key)
            log.error("property image row failed: %s", e)
            raise UpstreamFailure("database", f"could not record image for property {row.id}")
        return img

    def list_images(self, actor: Actor, property_id: str) -> Sequence[PropertyImage]:
        row = self.get_for_actor(actor, property_id)
        return list(row.images)

    def image_content(self, actor: Actor, property_id: str, image_id: int) -> tuple[PropertyImage, bytes]:
        img = self._image(actor, property_id, image_id, edit=False)
        return img, self._storage().get(img.storage_key)

    def delete_image(self, actor: Actor, property_id: str, image_id: int) -> None:
        img = self._image(actor, property_id, image_id, edit=True)
        key = img.storage_key
        self.db.delete(img)
        audit_write(
            self.db,
            actor_id=actor.id,
            action="property_image_deleted",
            entity_type="property",
            entity_id=str(property_id),
            before={"image_id": int(image_id), "storage_key": key},
        )
        self.db.commit()
        self._storage().delete(key)

    def _image(self, actor: Actor, property_id: str, image_id: int, *, edit: bool) -> PropertyImage:
        row = self._editable(actor, property_id) if edit else self.get_for_actor(actor, property_id)
        img = self.db.get(PropertyImage, int(image_id))
        if img is None or img.property_id != row.id:
            raise NotFound("property image not found", details={"image_id": int(image_id)})
        return img

    def _storage(self) -> BlobStorage:
        if self.storage is None:
            raise UpstreamFailure("storage", "no blob storage configured for property images")
        return self.storage


def _clean(fields: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    """Validates property fields; `partial` skips missing required ones."""
    out: dict[str, Any] = {}
    for k in PROPERTY_FIELDS:
        if k not in fields:
            continue
        v = fields[k]
        if isinstance(v, str):
            v = v.strip() or None
        out[k] = v

    for k, n in _MIN_TEXT.items():
        if k not in out and partial:
            continue
        v = out.get(k)
        if v is None or len(v) < n:
            raise ValidationError(f"{k} must be at least {n} characters", details={"field": k})

    if "property_type" in out or not partial:
        if out.get("property_type") not in PROPERTY_TYPES:
            raise ValidationError(
                f"unknown property_type: {out.get('property_type')}",
                details={"field": "property_type", "allowed": list(PROPERTY_TYPES)},
            )
    if out.get("listing_type") is not None and out["listing_type"] not in LISTING_TYPES:
        raise ValidationError(
            f"unknown listing_type: {out['listing_type']}",
            details={"field": "listing_type", "allowed": list(LISTING_TYPES)},
        )
    if "status" in out and out["status"] not in PROPERTY_STATUSES:
        raise ValidationError(
            f"unknown status: {out['status']}",
            details={"field": "status", "allowed": list(PROPERTY_STATUSES)},
        )

    for k in _NUMERIC:
        v = out.get(k)
        if v is None:
            continue
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v) or v < 0:
            raise ValidationError(f"{k} must be a non-negative number", details={"field": k})

    year = out.get("year_built")
    if year is not None and not (1800 <= int(year) <= date.today().year):
        raise ValidationError(
            f"year_built must be between 1800 and {date.today().year}",
            details={"field": "year_built"},
        )
    return out
