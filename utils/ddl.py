"""Creation and evolution of the physical tables behind custom tables.

This is the only module that issues CREATE TABLE, ALTER TABLE and DROP TABLE
for user-defined tables. Each operation runs in a single transaction that
covers both the catalog rows and the DDL, so a failure at any step leaves
neither behind.

Copyright (c) Bryn Gwalad 2025
"""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    DATE,
    DECIMAL,
    INTEGER,
    TEXT,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    func,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.schema import CreateTable
from sqlmodel import Session, select

from api.models import CustomField, CustomLookupTable, CustomTable, User, utc_now
from utils.errors import BadRequestError
from utils.identifiers import (
    MAX_IDENTIFIER_LENGTH,
    PhysicalIdentifier,
    extract_username,
    physical_table_name,
    sanitize_identifier,
)

logger = logging.getLogger("custom_tables.ddl")

# Whitelist of field types and the column type each one is stored as.
FIELD_TYPES = {
    "text": TEXT,
    "number": lambda: DECIMAL(10, 2),
    "integer": INTEGER,
    "select": TEXT,
    "textarea": TEXT,
    "date": DATE,
    "month-year": DATE,
    "currency": lambda: DECIMAL(10, 2),
}

# Path segments under /api/tables that a table name would shadow.
ROUTE_NAMES = frozenset(["lookups"])

IMAGE_SLOTS = ("image1", "image2", "image3")
BASELINE_COLUMNS = ("id", "created_by", "quantity", "added_date", "qr_code") + IMAGE_SLOTS

# Accepted DEFAULT expressions for columns added later: plain literals only.
DEFAULT_KEYWORDS = frozenset(["NULL", "TRUE", "FALSE", "CURRENT_DATE", "CURRENT_TIMESTAMP"])
NUMERIC_LITERAL_RE = re.compile(r"-?\d+(\.\d+)?")
STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")


def column_type(field_type):
    """Column type for ``field_type``; BadRequestError if it is not whitelisted."""
    factory = FIELD_TYPES.get(field_type) if isinstance(field_type, str) else None
    if factory is None:
        raise BadRequestError(f"Invalid field type: {field_type}")
    return factory()


def default_literal(value) -> Optional[str]:
    """Render ``value`` as a DEFAULT clause literal, refusing anything else."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    candidate = str(value).strip()
    if candidate.upper() in DEFAULT_KEYWORDS:
        return candidate.upper()
    if NUMERIC_LITERAL_RE.fullmatch(candidate) or STRING_LITERAL_RE.fullmatch(candidate):
        return candidate
    raise BadRequestError(
        f"Unsupported default value: {value!r}. Use a number, a quoted string, "
        "NULL, TRUE, FALSE, CURRENT_DATE or CURRENT_TIMESTAMP."
    )


def baseline_columns() -> List[Column]:
    """Columns every physical table starts with."""
    return [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column(
            "created_by",
            Integer,
            ForeignKey(User.__table__.c.id, ondelete="CASCADE"),
            nullable=False,
        ),
        Column("quantity", Integer, nullable=False, server_default=text("1")),
        Column("added_date", DateTime(timezone=True), server_default=func.current_timestamp()),
        Column("qr_code", String(500)),
    ] + [Column(slot, String(500)) for slot in IMAGE_SLOTS]


def index_name(physical_name: PhysicalIdentifier) -> str:
    name = f"idx_{physical_name}_created_by"
    if len(name) > MAX_IDENTIFIER_LENGTH:
        digest = hashlib.sha1(physical_name.encode("utf-8")).hexdigest()[:16]
        name = f"idx_{digest}_created_by"
    return name


def _validate_field(field, position: int) -> Dict[str, Any]:
    if not isinstance(field, dict):
        raise BadRequestError(f"Field {position + 1} must be an object")
    if not field.get("field_name") or not field.get("field_label") or not field.get("field_type"):
        raise BadRequestError(
            f"Field {position + 1} missing required properties (field_name, field_label, field_type)"
        )
    return field


def _resolve_lookup_table_id(session: Session, lookup_table_id) -> Optional[int]:
    """Map a lookup reference (id or table name) to an id; None when unknown."""
    if isinstance(lookup_table_id, str) and lookup_table_id and not lookup_table_id.isdigit():
        return session.exec(
            select(CustomLookupTable.id).where(CustomLookupTable.table_name == lookup_table_id)
        ).first()
    if isinstance(lookup_table_id, bool) or not isinstance(lookup_table_id, (int, str)) or lookup_table_id == "":
        return None
    lookup = session.get(CustomLookupTable, int(lookup_table_id))
    return lookup.id if lookup else None


def _field_row(session: Session, table_id: int, field_name: str, field: Dict[str, Any], display_order: int) -> CustomField:
    return CustomField(
        table_id=table_id,
        field_name=field_name,
        field_label=field["field_label"],
        field_type=field["field_type"],
        is_required=bool(field.get("is_required")),
        display_order=display_order,
        placeholder=field.get("placeholder") or None,
        options=field.get("options") or None,
        show_in_table=field.get("show_in_table") is not False,
        show_in_mobile=field.get("show_in_mobile") is not False,
        is_bold=bool(field.get("is_bold")),
        help_text=field.get("help_text") or None,
        lookup_table_id=_resolve_lookup_table_id(session, field.get("lookup_table_id")),
    )


def _quote(connection: Connection, name: PhysicalIdentifier) -> str:
    return connection.dialect.identifier_preparer.quote(name)


def create_custom_table(
    engine: Engine,
    table_def: Dict[str, Any],
    fields: List[Dict[str, Any]],
    user_id: int,
    user_email: str,
) -> Dict[str, Any]:
    """Register a custom table and create its physical table.

    Returns ``{"table_id": ..., "table_name": <physical name>}``.
    """
    with Session(engine) as session:
        with session.begin():
            username = extract_username(user_email)
            table_name = sanitize_identifier(table_def.get("table_name"))
            if table_name in ROUTE_NAMES:
                raise BadRequestError(f"Table name '{table_name}' is reserved")
            physical_name = physical_table_name(username, table_name)

            existing = session.exec(
                select(CustomTable.id).where(
                    CustomTable.table_name == table_name, CustomTable.created_by == user_id
                )
            ).first()
            if existing is not None:
                raise BadRequestError(f"Table '{table_name}' already exists in your account")

            if not table_def.get("display_name"):
                raise BadRequestError("Table must have table_name and display_name")
            if not fields or not isinstance(fields, list):
                raise BadRequestError("At least one field is required")

            custom_table = CustomTable(
                table_name=table_name,
                display_name=table_def.get("display_name"),
                description=table_def.get("description") or None,
                icon=table_def.get("icon") or "MdFolder",
                created_by=user_id,
                is_shared=bool(table_def.get("is_shared")),
            )
            session.add(custom_table)
            try:
                session.flush()
            except IntegrityError as exc:
                raise BadRequestError(f"Table '{table_name}' already exists in your account") from exc

            columns = baseline_columns()
            seen = set(BASELINE_COLUMNS)
            for position, field in enumerate(fields):
                field = _validate_field(field, position)
                field_name = sanitize_identifier(field["field_name"])
                if field_name in seen:
                    raise BadRequestError(f"Duplicate or reserved field name: {field_name}")
                seen.add(field_name)

                columns.append(
                    Column(field_name, column_type(field["field_type"]), nullable=not field.get("is_required"))
                )
                display_order = field.get("display_order")
                session.add(
                    _field_row(
                        session,
                        custom_table.id,
                        field_name,
                        field,
                        position if display_order is None else int(display_order),
                    )
                )
            session.flush()

            connection = session.connection()
            physical_table = Table(physical_name, MetaData(), *columns)
            connection.execute(CreateTable(physical_table))
            Index(index_name(physical_name), physical_table.c.created_by).create(connection)
            table_id = custom_table.id

    logger.info("User %s created table %s (%s)", user_id, table_name, physical_name)
    return {"table_id": table_id, "table_name": str(physical_name)}


def delete_custom_table(engine: Engine, table_name: str, user_id: int, user_email: str) -> None:
    """Drop the caller's physical table and remove its catalog entry.

    Fields and permission grants go with the catalog row (ON DELETE CASCADE).
    """
    with Session(engine) as session:
        with session.begin():
            username = extract_username(user_email)
            table_name = sanitize_identifier(table_name)
            physical_name = physical_table_name(username, table_name)

            custom_table = session.exec(
                select(CustomTable).where(
                    CustomTable.table_name == table_name, CustomTable.created_by == user_id
                )
            ).first()
            if custom_table is None:
                raise BadRequestError(f"Table '{table_name}' not found in your account")
            if custom_table.is_system:
                raise BadRequestError("Cannot delete system tables")
            if custom_table.created_by != user_id:
                raise BadRequestError("Only the table creator can delete this table")

            connection = session.connection()
            connection.execute(text(f"DROP TABLE IF EXISTS {_quote(connection, physical_name)}"))
            session.delete(custom_table)

    logger.info("User %s deleted table %s (%s)", user_id, table_name, physical_name)


def add_field_to_table(engine: Engine, table_name: str, field: Dict[str, Any], user_id: int, user_email: str) -> None:
    """Append a column to the caller's table and record its field definition."""
    with Session(engine) as session:
        with session.begin():
            username = extract_username(user_email)
            table_name = sanitize_identifier(table_name)
            physical_name = physical_table_name(username, table_name)
            field = _validate_field(field, 0)
            field_name = sanitize_identifier(field["field_name"])

            custom_table = session.exec(
                select(CustomTable).where(
                    CustomTable.table_name == table_name, CustomTable.created_by == user_id
                )
            ).first()
            if custom_table is None:
                raise BadRequestError(f"Table '{table_name}' not found in your account")
            if custom_table.created_by != user_id:
                raise BadRequestError("Only the table creator can modify this table")

            sql_type = column_type(field["field_type"])
            if field_name in BASELINE_COLUMNS or session.exec(
                select(CustomField.id).where(
                    CustomField.table_id == custom_table.id, CustomField.field_name == field_name
                )
            ).first() is not None:
                raise BadRequestError(f"Field '{field_name}' already exists")
            default = default_literal(field.get("default_value"))

            connection = session.connection()
            clauses = [
                f"ALTER TABLE {_quote(connection, physical_name)}",
                f"ADD COLUMN {_quote(connection, field_name)} {sql_type.compile(dialect=connection.dialect)}",
            ]
            if field.get("is_required"):
                clauses.append("NOT NULL")
            if default is not None:
                # text() would read ":word" inside a string literal as a bind parameter
                clauses.append("DEFAULT " + default.replace(":", r"\:"))
            try:
                connection.execute(text(" ".join(clauses)))
            except DBAPIError as exc:
                raise BadRequestError(f"Could not add field '{field_name}': {exc.orig}") from exc

            next_order = session.exec(
                select(func.coalesce(func.max(CustomField.display_order), -1) + 1).where(
                    CustomField.table_id == custom_table.id
                )
            ).one()
            session.add(_field_row(session, custom_table.id, field_name, field, next_order))
            custom_table.updated_at = utc_now()
            session.add(custom_table)

    logger.info("User %s added field %s to %s", user_id, field_name, physical_name)
