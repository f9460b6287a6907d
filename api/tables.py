"""Table management routes: custom table schemas, sharing and lookup tables.

Mounted under ``/api/tables``. Schema changes go through ``utils.ddl``; the
remaining routes read and write catalog rows directly.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from api.auth import get_current_user, is_admin
from api.models import User, utc_now
from utils import lookups
from utils.catalog import (
    find_table_with_permission,
    get_field_definitions,
    get_owned_table,
    grant_permission,
    list_all_tables,
    list_permissions,
    list_visible_tables,
    revoke_permission,
)
from utils.database import get_engine, get_session
from utils.ddl import add_field_to_table, create_custom_table, delete_custom_table
from utils.errors import BadRequestError, ForbiddenError, NotFoundError
from utils.identifiers import sanitize_identifier

router = APIRouter(prefix="/api/tables", tags=["tables"])

logger = logging.getLogger("custom_tables.api.tables")

TABLE_SETTINGS = ("display_name", "description", "icon", "is_shared")


def _visible_table(session, table_name: str, user: User):
    """Table metadata for read routes: NotFound if absent, Forbidden if not visible."""
    meta = find_table_with_permission(session, sanitize_identifier(table_name), user.id)
    if meta is None:
        raise NotFoundError("Table not found")
    if not meta.user_permission:
        raise ForbiddenError("Access denied to this table")
    return meta


@router.get("")
def list_tables(user: User = Depends(get_current_user)):
    """Tables the caller owns, that are shared, or that were granted to them."""
    with get_session() as session:
        return {"tables": list_visible_tables(session, user.id)}


@router.post("", status_code=201)
def create_table(body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    table_def = body.get("table")
    fields = body.get("fields")
    if not table_def or not fields:
        raise BadRequestError("Missing required fields: table and fields")
    if not isinstance(table_def, dict) or not table_def.get("table_name") or not table_def.get("display_name"):
        raise BadRequestError("Table must have table_name and display_name")

    result = create_custom_table(get_engine(), table_def, fields, user.id, user.email)
    return {
        "message": "Table created successfully",
        "tableId": result["table_id"],
        "tableName": result["table_name"],
    }


@router.get("/admin/all")
def list_every_table(user: User = Depends(get_current_user)):
    if not is_admin(user):
        raise ForbiddenError("Admin access required")
    with get_session() as session:
        return {"tables": list_all_tables(session)}


# Lookup tables. Declared before the /{table_name} routes so "lookups" is
# never read as a table name.

@router.get("/lookups")
def list_lookup_tables(user: User = Depends(get_current_user)):
    with get_session() as session:
        return {"lookups": lookups.list_lookups(session, user)}


@router.post("/lookups", status_code=201)
def create_lookup_table(body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    with get_session() as session:
        lookup = lookups.create_lookup(session, body, user)
        return {"lookup": lookup.model_dump()}


@router.get("/lookups/{lookup_identifier}")
def get_lookup_table(lookup_identifier: str, user: User = Depends(get_current_user)):
    """Lookup table with its values, by numeric id or by table name."""
    with get_session() as session:
        return lookups.get_lookup(session, lookup_identifier, user)


@router.put("/lookups/{lookup_id}")
def update_lookup_table(lookup_id: int, body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    with get_session() as session:
        lookup = lookups.update_lookup(session, lookup_id, body, user)
        return {"lookup": lookup.model_dump()}


@router.delete("/lookups/{lookup_id}")
def delete_lookup_table(lookup_id: int, user: User = Depends(get_current_user)):
    with get_session() as session:
        lookups.delete_lookup(session, lookup_id, user)
    return {"message": "Lookup table deleted successfully"}


@router.post("/lookups/{lookup_id}/values", status_code=201)
def add_lookup_value(lookup_id: int, body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    with get_session() as session:
        value = lookups.add_value(session, lookup_id, body, user)
        return {"value": value.model_dump()}


@router.put("/lookups/{lookup_id}/values/{value_id}")
def update_lookup_value(
    lookup_id: int,
    value_id: int,
    body: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
):
    with get_session() as session:
        value = lookups.update_value(session, lookup_id, value_id, body, user)
        return {"value": value.model_dump()}


@router.delete("/lookups/{lookup_id}/values/{value_id}")
def delete_lookup_value(lookup_id: int, value_id: int, user: User = Depends(get_current_user)):
    with get_session() as session:
        lookups.delete_value(session, lookup_id, value_id, user)
    return {"message": "Lookup value deleted successfully"}


@router.post("/lookups/{lookup_id}/import")
def import_lookup_values(lookup_id: int, body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    """Append ``csv_data`` (an array of objects) to the lookup table."""
    with get_session() as session:
        count = lookups.import_values(session, lookup_id, body.get("csv_data"), user)
    return {"message": f"Imported {count} values successfully"}


@router.get("/lookups/{lookup_id}/export")
def export_lookup_values(lookup_id: int, user: User = Depends(get_current_user)):
    with get_session() as session:
        return {"data": lookups.export_values(session, lookup_id, user)}


@router.get("/{table_name}")
def get_table(table_name: str, user: User = Depends(get_current_user)):
    with get_session() as session:
        return {"table": _visible_table(session, table_name, user).as_dict()}


@router.get("/{table_name}/definition")
def get_table_definition(table_name: str, user: User = Depends(get_current_user)):
    """Table metadata and its fields in display order."""
    with get_session() as session:
        meta = _visible_table(session, table_name, user)
        return {"table": meta.as_dict(), "fields": get_field_definitions(session, meta.id)}


@router.put("/{table_name}")
def update_table_settings(table_name: str, body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    """Change display name, description, icon or sharing of the caller's table."""
    with get_session() as session:
        custom_table = get_owned_table(session, sanitize_identifier(table_name), user.id, "update settings")
        if custom_table.is_system:
            raise BadRequestError("Cannot modify system tables")

        updates = {key: body[key] for key in TABLE_SETTINGS if key in body}
        if not updates:
            raise BadRequestError("No fields to update")
        if "is_shared" in updates:
            updates["is_shared"] = bool(updates["is_shared"])
        for key, value in updates.items():
            setattr(custom_table, key, value)
        custom_table.updated_at = utc_now()

        session.add(custom_table)
        session.commit()
        session.refresh(custom_table)
        logger.info("User %s updated settings of table %s: %s", user.id, custom_table.table_name, sorted(updates))
        return {"table": custom_table.model_dump()}


@router.delete("/{table_name}")
def delete_table(table_name: str, user: User = Depends(get_current_user)):
    delete_custom_table(get_engine(), table_name, user.id, user.email)
    return {"message": "Table deleted successfully"}


@router.get("/{table_name}/permissions")
def get_table_permissions(table_name: str, user: User = Depends(get_current_user)):
    with get_session() as session:
        custom_table = get_owned_table(session, sanitize_identifier(table_name), user.id, "view permissions")
        return {"permissions": list_permissions(session, custom_table)}


@router.post("/{table_name}/permissions")
def grant_table_permission(table_name: str, body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    target_user_id = body.get("user_id")
    permission_level = body.get("permission_level")
    if not target_user_id or not permission_level:
        raise BadRequestError("Missing required fields: user_id and permission_level")
    try:
        target_user_id = int(target_user_id)
    except (TypeError, ValueError):
        raise BadRequestError("user_id must be an integer")

    with get_session() as session:
        custom_table = get_owned_table(session, sanitize_identifier(table_name), user.id, "grant permissions")
        grant_permission(session, custom_table, target_user_id, permission_level, user.id)
    return {"message": "Permission granted successfully"}


@router.delete("/{table_name}/permissions/{target_user_id}")
def revoke_table_permission(table_name: str, target_user_id: int, user: User = Depends(get_current_user)):
    with get_session() as session:
        custom_table = get_owned_table(session, sanitize_identifier(table_name), user.id, "revoke permissions")
        revoke_permission(session, custom_table, target_user_id)
    return {"message": "Permission revoked successfully"}


@router.post("/{table_name}/fields")
def add_table_field(table_name: str, body: Dict[str, Any] = Body(...), user: User = Depends(get_current_user)):
    if not body.get("field_name") or not body.get("field_label") or not body.get("field_type"):
        raise BadRequestError("Missing required field properties")
    add_field_to_table(get_engine(), table_name, body, user.id, user.email)
    return {"message": "Field added successfully"}
