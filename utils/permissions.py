"""Permission resolution for custom tables.

A user's permission on a table is computed, never stored:

- ``owner`` when they created the table
- ``view`` when the table is shared
- the level of their explicit grant (view, edit or admin)
- nothing otherwise, which always means access denied

Item operations are checked in two steps. The table-level permission must
allow the operation, then row-scoped mutations also require the acting user
to have created the row unless they own the table.

Copyright (c) Bryn Gwalad 2025
"""

from typing import Optional

from sqlmodel import Session

from api.models import PERMISSION_ADMIN, PERMISSION_EDIT, PERMISSION_OWNER, PERMISSION_VIEW
from utils.catalog import TableMetadata, find_table_with_permission
from utils.errors import ForbiddenError

READ_PERMISSIONS = frozenset([PERMISSION_OWNER, PERMISSION_VIEW, PERMISSION_EDIT, PERMISSION_ADMIN])
WRITE_PERMISSIONS = frozenset([PERMISSION_OWNER, PERMISSION_EDIT, PERMISSION_ADMIN])


def effective_permission(created_by: int, is_shared: bool, grant_level: Optional[str], user_id: int) -> Optional[str]:
    """Pure counterpart of ``utils.catalog.user_permission_expr``."""
    if created_by == user_id:
        return PERMISSION_OWNER
    if is_shared:
        return PERMISSION_VIEW
    return grant_level or None


def get_table_metadata(session: Session, table_name: str, user_id: int) -> TableMetadata:
    """Load a table as seen by ``user_id``; ForbiddenError if they have no access."""
    meta = find_table_with_permission(session, table_name, user_id)
    if meta is None or not meta.user_permission:
        raise ForbiddenError("Access denied to this table")
    return meta


def require_read(meta: TableMetadata) -> None:
    if meta.user_permission not in READ_PERMISSIONS:
        raise ForbiddenError("No read permission")


def require_write(meta: TableMetadata, action: str = "write") -> None:
    if meta.user_permission not in WRITE_PERMISSIONS:
        raise ForbiddenError(f"No {action} permission")


def rows_restricted(meta: TableMetadata) -> bool:
    """Whether reads must be limited to rows the caller created."""
    return not meta.is_shared and not meta.is_owner


def require_row_owner(meta: TableMetadata, created_by: int, user_id: int, action: str = "modify") -> None:
    """Row-level check for mutations; run after ``require_write``."""
    if not meta.is_owner and created_by != user_id:
        raise ForbiddenError(f"You can only {action} your own items")
