"""Item routes for every custom table, mounted under ``/api/entities``.

The routes are thin: they resolve the caller and delegate to
``DynamicEntityService``, which owns permission checks and SQL.

Copyright (c) Bryn Gwalad 2025
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, File, UploadFile

from api.auth import get_current_user
from api.models import User
from utils import config
from utils.database import get_engine
from utils.entities import DynamicEntityService
from utils.images import ImageStore
from utils.qr_codes import QRCodeGenerator

router = APIRouter(prefix="/api/entities", tags=["entities"])


def get_entity_service() -> DynamicEntityService:
    return DynamicEntityService(
        get_engine(),
        QRCodeGenerator(config.UPLOAD_DIR, config.FRONTEND_URL),
        ImageStore(config.UPLOAD_DIR, config.MAX_UPLOAD_BYTES),
    )


@router.get("/{table_name}")
def list_items(
    table_name: str,
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    return {"data": service.list_items(table_name, user.id)}


@router.get("/{table_name}/{item_id}")
def get_item(
    table_name: str,
    item_id: int,
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    return service.get_item(table_name, item_id, user.id)


@router.post("/{table_name}")
def create_item(
    table_name: str,
    body: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    item_id = service.create_item(table_name, body, user.id)
    return {"message": "Item created", "itemId": item_id}


@router.put("/{table_name}/{item_id}")
def update_item(
    table_name: str,
    item_id: int,
    body: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    return service.update_item(table_name, item_id, body, user.id)


@router.delete("/{table_name}/{item_id}")
def delete_item(
    table_name: str,
    item_id: int,
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    return service.delete_item(table_name, item_id, user.id)


@router.post("/{table_name}/upload/{item_id}")
def upload_images(
    table_name: str,
    item_id: int,
    images: List[UploadFile] = File(...),
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    """Store up to three images (multipart field ``images``) on an item."""
    return service.upload_images(table_name, item_id, images, user.id)


@router.delete("/{table_name}/image/{item_id}/{slot}")
def delete_image(
    table_name: str,
    item_id: int,
    slot: str,
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    return service.delete_image(table_name, item_id, slot, user.id)


@router.post("/{table_name}/qr/regenerate/{item_id}")
def regenerate_qr(
    table_name: str,
    item_id: int,
    user: User = Depends(get_current_user),
    service: DynamicEntityService = Depends(get_entity_service),
):
    result = service.regenerate_qr(table_name, item_id, user.id)
    return {"message": "QR code regenerated", **result}
