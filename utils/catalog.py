"""Read/write access to the schema catalog.

The catalog tables (``custom_tables``, ``custom_fields``, ``table_permissions``)
describe every user-defined table. Physical table names are never stored:
they are derived from the owner's email each time through
``TableMetadata.physical_name``.

Every query that reports a ``user_permission`` builds it from
``user_permission_expr`` so the rule cannot drift between endpoints.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func, inspect, or_, table
from sqlalchemy.engine import Connection
from sqlmodel import Session, select

from api.models import (
    GRANTABLE_PERMISSIONS,
    PERMISSION_OWNER,
    PERMISSION_VIEW,
    CustomField,
    CustomLookupTable,
    CustomTable,
    TablePermission,
    User,
    utc_now,
)
from utils.errors import BadRequestError, ForbiddenError, NotFoundError
from utils.identifiers import (
    PhysicalIdentifier,
    extract_username,
    physical_table_name,
    sanitize_identifier,
)

logger = logging.getLogger("custom_tables.catalog")


@dataclass
class TableMetadata:
    """A catalog row together with its creator's email and the caller's permission."""

    table: CustomTable
    creator_email: str
    user_permission: Optional[str]

    @property
    def id(self) -> int:
        return self.table.id

    @property
    def table_name(self) -> str:
        return self.table.table_name

    @property
    def is_shared(self) -> bool:
        return bool(self.table.is_shared)

    @property
    def is_owner(self) -> bool:
        return self.user_permission == PERMISSION_OWNER

    @property
    def physical_name(self) -> PhysicalIdentifier:
        username = extract_username(self.creator_email)
        return physical_table_name(username, sanitize_identifier(self.table.table_name))

    def as_dict(self) -> Dict[str, Any]:
        data = self.table.model_dump()
        data["creator_email"] = self.creator_email
        data["user_permission"] = self.user_permission
        return data


def user_permission_expr(user_id: int):
    """SQL form of the effective permission of ``user_id`` on a custom table.

    owner if they created it, else view if it is shared, else the level of
    their grant (NULL when there is none). Needs ``table_permissions`` joined
    for ``user_id``; see ``_tables_with_permission``.
    """
    return case(
        (CustomTable.created_by == user_id, PERMISSION_OWNER),
        (CustomTable.is_shared == True, PERMISSION_VIEW),  # noqa: E712
        else_=TablePermission.permission_level,
    )


def _tables_with_permission(user_id: int, *columns):
    permission = user_permission_expr(user_id)
    stmt = (
        select(CustomTable, User.email, permission.label("user_permission"), *columns)
        .join(User, User.id == CustomTable.created_by)
        .outerjoin(
            TablePermission,
            and_(TablePermission.table_id == CustomTable.id, TablePermission.user_id == user_id),
        )
    )
    return stmt, permission


def find_table_with_permission(session: Session, table_name: str, user_id: int) -> Optional[TableMetadata]:
    """Load the logical table ``table_name`` as seen by ``user_id``.

    Names are unique per creator only. When several users own a table with
    this name the caller's own table wins, then one the caller can access,
    then the oldest.
    """
    stmt, permission = _tables_with_permission(user_id)
    stmt = stmt.where(CustomTable.table_name == table_name).order_by(
        (CustomTable.created_by == user_id).desc(),
        permission.is_(None),
        CustomTable.id,
    )
    row = session.exec(stmt).first()
    if row is None:
        return None
    custom_table, creator_email, user_permission = row
    return TableMetadata(custom_table, creator_email, user_permission)


def get_field_definitions(session: Session, table_id: int) -> List[Dict[str, Any]]:
    """Field definitions of a table in display order, with lookup table names."""
    stmt = (
        select(CustomField, CustomLookupTable.table_name)
        .outerjoin(CustomLookupTable, CustomLookupTable.id == CustomField.lookup_table_id)
        .where(CustomField.table_id == table_id)
        .order_by(CustomField.display_order, CustomField.id)
    )
    fields = []
    for field, lookup_table_name in session.exec(stmt).all():
        data = field.model_dump()
        data["lookup_table_name"] = lookup_table_name
        fields.append(data)
    return fields


def count_items(connection: Connection, meta: TableMetadata) -> int:
    """Number of rows in the physical table behind ``meta`` (0 if it is missing)."""
    try:
        name = meta.physical_name
    except BadRequestError:
        logger.warning("Table %s has no valid physical name (creator %s)", meta.table_name, meta.creator_email)
        return 0
    if not inspect(connection).has_table(name):
        return 0
    return connection.execute(select(func.count()).select_from(table(name))).scalar_one()


def list_visible_tables(session: Session, user_id: int) -> List[Dict[str, Any]]:
    """Tables the user owns, that are shared, or that were granted to them."""
    stmt, _ = _tables_with_permission(user_id)
    stmt = stmt.where(
        or_(
            CustomTable.created_by == user_id,
            CustomTable.is_shared == True,  # noqa: E712
            TablePermission.user_id == user_id,
        )
    ).order_by(CustomTable.created_at.desc(), CustomTable.id.desc())

    connection = session.connection()
    tables = []
    for custom_table, creator_email, user_permission in session.exec(stmt).all():
        meta = TableMetadata(custom_table, creator_email, user_permission)
        data = meta.as_dict()
        data["item_count"] = count_items(connection, meta)
        tables.append(data)
    return tables


def list_all_tables(session: Session) -> List[Dict[str, Any]]:
    """Every custom table with field and grant counts (admin listing)."""
    field_count = (
        select(func.count(CustomField.id))
        .where(CustomField.table_id == CustomTable.id)
        .scalar_subquery()
    )
    permission_count = (
        select(func.count(TablePermission.id))
        .where(TablePermission.table_id == CustomTable.id)
        .scalar_subquery()
    )
    stmt = (
        select(CustomTable, User.email, field_count, permission_count)
        .join(User, User.id == CustomTable.created_by)
        .order_by(CustomTable.created_at.desc(), CustomTable.id.desc())
    )
    tables = []
    for custom_table, creator_email, fields, grants in session.exec(stmt).all():
        data = custom_table.model_dump()
        data["creator_email"] = creator_email
        data["field_count"] = fields
        data["permission_count"] = grants
        tables.append(data)
    return tables


def get_owned_table(session: Session, table_name: str, user_id: int, action: str = "modify this table") -> CustomTable:
    """Return the caller's own table named ``table_name``.

    Raises NotFoundError when no user has such a table and ForbiddenError when
    it exists but belongs to someone else.
    """
    tables = session.exec(select(CustomTable).where(CustomTable.table_name == table_name)).all()
    if not tables:
        raise NotFoundError("Table not found")
    for custom_table in tables:
        if custom_table.created_by == user_id:
            return custom_table
    raise ForbiddenError(f"Only the table creator can {action}")


def list_permissions(session: Session, custom_table: CustomTable) -> List[Dict[str, Any]]:
    stmt = (
        select(TablePermission, User.email)
        .join(User, User.id == TablePermission.user_id)
        .where(TablePermission.table_id == custom_table.id)
        .order_by(TablePermission.granted_at.desc(), TablePermission.id.desc())
    )
    permissions = []
    for grant, email in session.exec(stmt).all():
        data = grant.model_dump()
        data["email"] = email
        permissions.append(data)
    return permissions


def grant_permission(
    session: Session,
    custom_table: CustomTable,
    user_id: int,
    permission_level: str,
    granted_by: int,
) -> TablePermission:
    """Create or update the grant of ``permission_level`` to ``user_id``."""
    if permission_level not in GRANTABLE_PERMISSIONS:
        raise BadRequestError(
            f"Invalid permission level. Must be one of: {', '.join(GRANTABLE_PERMISSIONS)}"
        )
    if session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    grant = session.exec(
        select(TablePermission).where(
            TablePermission.table_id == custom_table.id, TablePermission.user_id == user_id
        )
    ).first()
    if grant is None:
        grant = TablePermission(table_id=custom_table.id, user_id=user_id, permission_level=permission_level)
    grant.permission_level = permission_level
    grant.granted_by = granted_by
    grant.granted_at = utc_now()
    session.add(grant)
    session.commit()
    session.refresh(grant)
    logger.info("Granted %s on table %s to user %s", permission_level, custom_table.id, user_id)
    return grant


def revoke_permission(session: Session, custom_table: CustomTable, user_id: int) -> None:
    grant = session.exec(
        select(TablePermission).where(
            TablePermission.table_id == custom_table.id, TablePermission.user_id == user_id
        )
    ).first()
    if grant is None:
        raise NotFoundError("Permission not found")
    session.delete(grant)
    session.commit()
    logger.info("Revoked permission on table %s from user %s", custom_table.id, user_id)
