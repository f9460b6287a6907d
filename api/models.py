"""Data models for the custom tables service.

This module defines the SQLModel models behind the schema catalog: users,
custom tables and their fields, lookup tables and their values, and the
per-user permission grants. The physical tables holding the items of each
custom table are not modelled here; they are created at runtime by
``utils.ddl``.

Copyright (c) Bryn Gwalad 2025
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

# Permission levels. "owner" is computed, the other three can be granted.
PERMISSION_OWNER = "owner"
PERMISSION_VIEW = "view"
PERMISSION_EDIT = "edit"
PERMISSION_ADMIN = "admin"
GRANTABLE_PERMISSIONS = (PERMISSION_VIEW, PERMISSION_EDIT, PERMISSION_ADMIN)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored in UTC.

    SQLite keeps no offset, so values read back without one are UTC and get
    it attached again.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class User(SQLModel, table=True):
    """An account as supplied by the authentication layer.

    Attributes:
        id: primary key
        email: login email; its local part names the user's physical tables
        role: "user" or "admin"
        email_verified: whether the email address was confirmed
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    role: str = "user"
    email_verified: bool = False
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class CustomTable(SQLModel, table=True):
    """Catalog entry for a user-defined table.

    Attributes:
        table_name: logical name, unique per creator
        display_name: name shown in the UI
        created_by: owner user id
        is_shared: when true every user can read every row
        is_system: built-in table that cannot be changed or deleted
    """

    __tablename__ = "custom_tables"
    __table_args__ = (
        UniqueConstraint("table_name", "created_by", name="uq_custom_tables_name_creator"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    table_name: str = Field(max_length=63, index=True)
    display_name: str
    description: Optional[str] = None
    icon: Optional[str] = "MdFolder"
    created_by: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    is_shared: bool = False
    is_system: bool = False
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class CustomLookupTable(SQLModel, table=True):
    """A named set of values that select fields can draw their options from."""

    __tablename__ = "custom_lookup_tables"

    id: Optional[int] = Field(default=None, primary_key=True)
    table_name: str = Field(max_length=63, unique=True)
    display_name: str
    created_by: int = Field(foreign_key="users.id", ondelete="CASCADE")
    is_shared: bool = False
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class CustomLookupValue(SQLModel, table=True):
    __tablename__ = "custom_lookup_values"

    id: Optional[int] = Field(default=None, primary_key=True)
    lookup_table_id: int = Field(
        foreign_key="custom_lookup_tables.id", ondelete="CASCADE", index=True
    )
    value_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    display_order: int = 0
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class CustomField(SQLModel, table=True):
    """One column of a custom table.

    ``field_name`` is also the column name in the physical table. Fields are
    only ever appended; ``display_order`` gives their presentation order.
    """

    __tablename__ = "custom_fields"
    __table_args__ = (
        UniqueConstraint("table_id", "field_name", name="uq_custom_fields_table_field"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: int = Field(foreign_key="custom_tables.id", ondelete="CASCADE", index=True)
    field_name: str = Field(max_length=63)
    field_label: str
    field_type: str
    is_required: bool = False
    display_order: int = 0
    placeholder: Optional[str] = None
    options: Optional[List[Any]] = Field(default=None, sa_column=Column(JSON))
    show_in_table: bool = True
    show_in_mobile: bool = True
    is_bold: bool = False
    help_text: Optional[str] = None
    lookup_table_id: Optional[int] = Field(
        default=None, foreign_key="custom_lookup_tables.id", ondelete="SET NULL"
    )
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class TablePermission(SQLModel, table=True):
    """Explicit grant of ``permission_level`` on a custom table to one user."""

    __tablename__ = "table_permissions"
    __table_args__ = (
        UniqueConstraint("table_id", "user_id", name="uq_table_permissions_table_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: int = Field(foreign_key="custom_tables.id", ondelete="CASCADE", index=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    permission_level: str
    granted_by: Optional[int] = Field(default=None, foreign_key="users.id")
    granted_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
