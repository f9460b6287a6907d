"""Lookup tables: shared value lists that select fields can use as options.

Admins create lookup tables; the admin or the creating user manages them.
Any user can read a lookup table that is shared or that they created.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from api.models import CustomField, CustomLookupTable, CustomLookupValue, User
from utils.errors import BadRequestError, ForbiddenError, NotFoundError
from utils.identifiers import sanitize_identifier

logger = logging.getLogger("custom_tables.lookups")

LOOKUP_PREFIX = "lookup_"


def _is_admin(user: User) -> bool:
    return user.role == "admin"


def _can_read(lookup: CustomLookupTable, user: User) -> bool:
    return lookup.is_shared or lookup.created_by == user.id or _is_admin(user)


def _serialize_lookup(lookup: CustomLookupTable, **extra) -> Dict[str, Any]:
    data = lookup.model_dump()
    data.update(extra)
    return data


def _managed_lookup(session: Session, lookup_id: int, user: User, action: str) -> CustomLookupTable:
    lookup = session.get(CustomLookupTable, lookup_id)
    if lookup is None:
        raise NotFoundError("Lookup table not found")
    if not _is_admin(user) and lookup.created_by != user.id:
        raise ForbiddenError(f"Only admins or table owner can {action}")
    return lookup


def _next_display_order(session: Session, lookup_id: int) -> int:
    return session.exec(
        select(func.coalesce(func.max(CustomLookupValue.display_order), 0) + 1).where(
            CustomLookupValue.lookup_table_id == lookup_id
        )
    ).one()


def list_lookups(session: Session, user: User) -> List[Dict[str, Any]]:
    value_count = (
        select(func.count(CustomLookupValue.id))
        .where(CustomLookupValue.lookup_table_id == CustomLookupTable.id)
        .scalar_subquery()
    )
    stmt = select(CustomLookupTable, User.email, value_count).join(
        User, User.id == CustomLookupTable.created_by
    )
    if not _is_admin(user):
        stmt = stmt.where(
            (CustomLookupTable.is_shared == True) | (CustomLookupTable.created_by == user.id)  # noqa: E712
        )
    stmt = stmt.order_by(CustomLookupTable.display_name)
    return [
        _serialize_lookup(lookup, creator_email=email, value_count=count)
        for lookup, email, count in session.exec(stmt).all()
    ]


def get_lookup(session: Session, identifier: str, user: User) -> Dict[str, Any]:
    """Lookup table with its values, addressed by numeric id or by table name."""
    stmt = select(CustomLookupTable, User.email).join(User, User.id == CustomLookupTable.created_by)
    if identifier.isdigit():
        stmt = stmt.where(CustomLookupTable.id == int(identifier))
    else:
        stmt = stmt.where(CustomLookupTable.table_name == sanitize_identifier(identifier))
    row = session.exec(stmt).first()
    if row is None:
        raise NotFoundError("Lookup table not found")

    lookup, creator_email = row
    if not _can_read(lookup, user):
        raise ForbiddenError("Access denied to this lookup table")

    values = session.exec(
        select(CustomLookupValue)
        .where(CustomLookupValue.lookup_table_id == lookup.id)
        .order_by(CustomLookupValue.display_order, CustomLookupValue.id)
    ).all()
    return _serialize_lookup(
        lookup, creator_email=creator_email, values=[value.model_dump() for value in values]
    )


def create_lookup(session: Session, data: Dict[str, Any], user: User) -> CustomLookupTable:
    if not _is_admin(user):
        raise ForbiddenError("Only admins can create lookup tables")

    table_name = data.get("table_name")
    display_name = data.get("display_name")
    if not table_name or not display_name or not isinstance(table_name, str):
        raise BadRequestError("table_name and display_name are required")
    if not table_name.startswith(LOOKUP_PREFIX):
        table_name = LOOKUP_PREFIX + table_name

    lookup = CustomLookupTable(
        table_name=sanitize_identifier(table_name),
        display_name=display_name,
        created_by=user.id,
        is_shared=bool(data.get("is_shared")),
    )
    session.add(lookup)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise BadRequestError(f"Lookup table '{table_name}' already exists") from exc
    session.refresh(lookup)
    logger.info("User %s created lookup table %s", user.id, lookup.table_name)
    return lookup


def update_lookup(session: Session, lookup_id: int, data: Dict[str, Any], user: User) -> CustomLookupTable:
    lookup = _managed_lookup(session, lookup_id, user, "update lookup tables")
    changed = False
    if "display_name" in data and data["display_name"] is not None:
        lookup.display_name = data["display_name"]
        changed = True
    if "is_shared" in data and data["is_shared"] is not None:
        lookup.is_shared = bool(data["is_shared"])
        changed = True
    if not changed:
        raise BadRequestError("No fields to update")
    session.add(lookup)
    session.commit()
    session.refresh(lookup)
    return lookup


def delete_lookup(session: Session, lookup_id: int, user: User) -> None:
    lookup = _managed_lookup(session, lookup_id, user, "delete lookup tables")
    references = session.exec(
        select(func.count(CustomField.id)).where(CustomField.lookup_table_id == lookup.id)
    ).one()
    if references > 0:
        raise BadRequestError("Cannot delete lookup table that is referenced by table fields")
    session.delete(lookup)
    session.commit()
    logger.info("User %s deleted lookup table %s", user.id, lookup.table_name)


def add_value(session: Session, lookup_id: int, data: Dict[str, Any], user: User) -> CustomLookupValue:
    value_data = data.get("value_data")
    if not value_data:
        raise BadRequestError("value_data is required")
    lookup = _managed_lookup(session, lookup_id, user, "add values")

    display_order = data.get("display_order")
    if display_order is None:
        display_order = _next_display_order(session, lookup.id)
    value = CustomLookupValue(lookup_table_id=lookup.id, value_data=value_data, display_order=display_order)
    session.add(value)
    session.commit()
    session.refresh(value)
    return value


def update_value(session: Session, lookup_id: int, value_id: int, data: Dict[str, Any], user: User) -> CustomLookupValue:
    lookup = _managed_lookup(session, lookup_id, user, "update values")
    if data.get("value_data") is None and data.get("display_order") is None:
        raise BadRequestError("No fields to update")

    value = session.exec(
        select(CustomLookupValue).where(
            CustomLookupValue.id == value_id, CustomLookupValue.lookup_table_id == lookup.id
        )
    ).first()
    if value is None:
        raise NotFoundError("Lookup value not found")
    if data.get("value_data") is not None:
        value.value_data = data["value_data"]
    if data.get("display_order") is not None:
        value.display_order = data["display_order"]
    session.add(value)
    session.commit()
    session.refresh(value)
    return value


def delete_value(session: Session, lookup_id: int, value_id: int, user: User) -> None:
    lookup = _managed_lookup(session, lookup_id, user, "delete values")
    value = session.exec(
        select(CustomLookupValue).where(
            CustomLookupValue.id == value_id, CustomLookupValue.lookup_table_id == lookup.id
        )
    ).first()
    if value is not None:
        session.delete(value)
        session.commit()


def import_values(session: Session, lookup_id: int, rows, user: User) -> int:
    """Append ``rows`` (a list of objects) as values, all or nothing."""
    if not isinstance(rows, list):
        raise BadRequestError("csv_data must be an array of objects")
    lookup = _managed_lookup(session, lookup_id, user, "import values")

    display_order = _next_display_order(session, lookup.id)
    try:
        for row in rows:
            session.add(CustomLookupValue(lookup_table_id=lookup.id, value_data=row, display_order=display_order))
            display_order += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Imported %s values into lookup table %s", len(rows), lookup.table_name)
    return len(rows)


def export_values(session: Session, lookup_id: int, user: User) -> List[Any]:
    lookup = session.get(CustomLookupTable, lookup_id)
    if lookup is None:
        raise NotFoundError("Lookup table not found")
    if not _can_read(lookup, user):
        raise ForbiddenError("Access denied to this lookup table")
    return list(
        session.exec(
            select(CustomLookupValue.value_data)
            .where(CustomLookupValue.lookup_table_id == lookup.id)
            .order_by(CustomLookupValue.display_order, CustomLookupValue.id)
        ).all()
    )
