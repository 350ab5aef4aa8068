# backend/app/routers/properties.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile

from ..auth import Principal, get_principal
from ..deps import get_properties
from ..schemas import PropertyCreate, PropertyImageOut, PropertyOut, PropertyPage, PropertyUpdate
from ..services.property_service import PropertyService

router = APIRouter(prefix="/properties", tags=["properties"])


@router.post("", response_model=PropertyOut, status_code=201)
def create_property(
    payload: PropertyCreate,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    return svc.create(p.actor, **payload.model_dump(exclude_none=True))


@router.get("", response_model=PropertyPage)
def list_properties(
    q: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, le=100),
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    if q is not None and q.strip():
        result = svc.search(p.actor, q, page=page, page_size=page_size)
    else:
        result = svc.list_for_actor(p.actor, page=page, page_size=page_size)
    return PropertyPage.model_validate(result)


@router.get("/{property_id}", response_model=PropertyOut)
def get_property(
    property_id: str,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    return svc.get_for_actor(p.actor, property_id)


@router.patch("/{property_id}", response_model=PropertyOut)
def update_property(
    property_id: str,
    payload: PropertyUpdate,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    return svc.update(p.actor, property_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{property_id}")
def delete_property(
    property_id: str,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    svc.delete(p.actor, property_id)
    return {"ok": True}


@router.get("/{property_id}/similar", response_model=list[PropertyOut])
def similar_properties(
    property_id: str,
    limit: int = Query(default=3, ge=1, le=20),
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    return list(svc.similar(p.actor, property_id, limit=limit))


# ---- images ----
@router.post("/{property_id}/images", response_model=PropertyImageOut, status_code=201)
def upload_image(
    property_id: str,
    file: UploadFile = File(...),
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    data = file.file.read()
    return svc.add_image(p.actor, property_id, data=data, content_type=file.content_type, filename=file.filename)


@router.get("/{property_id}/images", response_model=list[PropertyImageOut])
def list_images(
    property_id: str,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    return list(svc.list_images(p.actor, property_id))


@router.get("/{property_id}/images/{image_id}")
def download_image(
    property_id: str,
    image_id: int,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    img, data = svc.image_content(p.actor, property_id, image_id)
    return Response(content=data, media_type=img.content_type)


@router.delete("/{property_id}/images/{image_id}")
def delete_image(
    property_id: str,
    image_id: int,
    p: Principal = Depends(get_principal),
    svc: PropertyService = Depends(get_properties),
):
    svc.delete_image(p.actor, property_id, image_id)
    return {"ok": True}
