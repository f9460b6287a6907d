"""Generic CRUD over the physical tables of custom tables.

Every operation resolves the caller's permission on the logical table,
derives the physical table name from the owner's email and only then touches
item rows. Table and column names placed in SQL text are
``PhysicalIdentifier`` values, field names read back from the catalog, or
members of ``IMAGE_SLOTS``; every value supplied by the caller is a bound
parameter.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from typing import Any, Dict, List, Sequence

from fastapi import UploadFile
from sqlalchemy import column, delete, insert, literal_column, select, table, update
from sqlalchemy.engine import Engine
from sqlmodel import Session

from utils.catalog import TableMetadata, get_field_definitions
from utils.ddl import IMAGE_SLOTS
from utils.errors import BadRequestError, ForbiddenError, NotFoundError
from utils.identifiers import sanitize_identifier
from utils.images import ImageStore
from utils.permissions import (
    get_table_metadata,
    require_read,
    require_row_owner,
    require_write,
    rows_restricted,
)
from utils.qr_codes import QRCodeGenerator

logger = logging.getLogger("custom_tables.entities")

# Baseline columns callers may set directly; the rest are server-controlled.
WRITABLE_BASELINE_COLUMNS = ("quantity",)


def _item_table(meta: TableMetadata, *column_names: str):
    """Lightweight table construct for the physical table behind ``meta``."""
    names = ["id", "created_by", "qr_code", *IMAGE_SLOTS, *column_names]
    return table(meta.physical_name, *(column(name) for name in dict.fromkeys(names)))


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class DynamicEntityService:
    def __init__(self, engine: Engine, qr_codes: QRCodeGenerator, images: ImageStore):
        self.engine = engine
        self.qr_codes = qr_codes
        self.images = images

    def _resolve(self, table_name: str, user_id: int, with_fields: bool = False):
        table_name = sanitize_identifier(table_name)
        with Session(self.engine) as session:
            meta = get_table_metadata(session, table_name, user_id)
            fields = get_field_definitions(session, meta.id) if with_fields else []
        return meta, fields

    def _fetch(self, meta: TableMetadata, item_id: int, *column_names: str) -> Dict[str, Any]:
        items = _item_table(meta)
        if column_names:
            stmt = select(*(items.c[name] for name in column_names), items.c.created_by)
        else:
            stmt = select(literal_column("*")).select_from(items)
        with self.engine.connect() as conn:
            row = conn.execute(stmt.where(items.c.id == item_id)).mappings().first()
        if row is None:
            raise NotFoundError("Item not found")
        return dict(row)

    def list_items(self, table_name: str, user_id: int) -> List[Dict[str, Any]]:
        meta, _ = self._resolve(table_name, user_id)
        require_read(meta)

        items = _item_table(meta)
        stmt = select(literal_column("*")).select_from(items)
        if rows_restricted(meta):
            stmt = stmt.where(items.c.created_by == user_id)
        stmt = stmt.order_by(items.c.id.desc())

        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    def get_item(self, table_name: str, item_id: int, user_id: int) -> Dict[str, Any]:
        meta, _ = self._resolve(table_name, user_id)
        require_read(meta)
        item = self._fetch(meta, item_id)
        if rows_restricted(meta) and item["created_by"] != user_id:
            raise ForbiddenError("Access denied")
        return item

    def create_item(self, table_name: str, data: Dict[str, Any], user_id: int) -> int:
        """Insert an item, then attach its QR code. Returns the new item id."""
        meta, fields = self._resolve(table_name, user_id, with_fields=True)
        require_write(meta)

        for field in fields:
            if field["is_required"] and _is_missing(data.get(field["field_name"])):
                raise BadRequestError(f"Required field missing: {field['field_label']}")

        field_names = [field["field_name"] for field in fields]
        values = {"created_by": user_id}
        for name in field_names:
            values[name] = data.get(name)
        for name in WRITABLE_BASELINE_COLUMNS:
            if data.get(name) is not None:
                values[name] = data[name]

        items = _item_table(meta, *field_names, *WRITABLE_BASELINE_COLUMNS)
        with self.engine.begin() as conn:
            item_id = conn.execute(insert(items).values(values).returning(items.c.id)).scalar_one()

        # Not atomic with the insert; regenerate_qr repairs a row left without one.
        qr_code_path = self.qr_codes.generate(meta.table_name, item_id, scope=meta.physical_name)
        with self.engine.begin() as conn:
            conn.execute(update(items).where(items.c.id == item_id).values(qr_code=qr_code_path))

        logger.info("User %s created item %s in %s", user_id, item_id, meta.physical_name)
        return item_id

    def update_item(self, table_name: str, item_id: int, data: Dict[str, Any], user_id: int) -> Dict[str, Any]:
        meta, fields = self._resolve(table_name, user_id, with_fields=True)
        require_write(meta)
        item = self._fetch(meta, item_id)
        require_row_owner(meta, item["created_by"], user_id, "modify")

        for field in fields:
            name = field["field_name"]
            if field["is_required"] and name in data and _is_missing(data[name]):
                raise BadRequestError(f"Required field missing: {field['field_label']}")
        for name in WRITABLE_BASELINE_COLUMNS:
            if name in data and data[name] is None:
                raise BadRequestError(f"Required field missing: {name}")

        writable = [field["field_name"] for field in fields] + list(WRITABLE_BASELINE_COLUMNS)
        values = {name: data[name] for name in writable if name in data}
        if not values:
            raise BadRequestError("No fields to update")

        items = _item_table(meta, *writable)
        stmt = update(items).where(items.c.id == item_id).values(values).returning(literal_column("*"))
        with self.engine.begin() as conn:
            return dict(conn.execute(stmt).mappings().one())

    def delete_item(self, table_name: str, item_id: int, user_id: int) -> Dict[str, Any]:
        meta, _ = self._resolve(table_name, user_id)
        require_write(meta, "delete")
        item = self._fetch(meta, item_id)
        require_row_owner(meta, item["created_by"], user_id, "delete")

        items = _item_table(meta)
        stmt = delete(items).where(items.c.id == item_id).returning(literal_column("*"))
        with self.engine.begin() as conn:
            deleted = dict(conn.execute(stmt).mappings().one())

        # best-effort cleanup, failures are logged by the collaborators
        self.qr_codes.delete(deleted.get("qr_code"))
        for slot in IMAGE_SLOTS:
            self.images.delete(deleted.get(slot))

        logger.info("User %s deleted item %s from %s", user_id, item_id, meta.physical_name)
        return deleted

    def upload_images(self, table_name: str, item_id: int, uploads: Sequence[UploadFile], user_id: int) -> Dict[str, Any]:
        """Store up to three images and put their paths in image1..imageN."""
        if not uploads:
            raise BadRequestError("No files uploaded")
        if len(uploads) > len(IMAGE_SLOTS):
            raise BadRequestError(f"Too many files. Max {len(IMAGE_SLOTS)} images.")
        for upload in uploads:
            self.images.validate(upload)

        meta, _ = self._resolve(table_name, user_id)
        require_write(meta)
        item = self._fetch(meta, item_id)
        require_row_owner(meta, item["created_by"], user_id, "modify")

        values = {}
        try:
            for slot, upload in zip(IMAGE_SLOTS, uploads):
                values[slot] = self.images.save(meta.table_name, upload)
        except Exception:
            for saved in values.values():
                self.images.delete(saved)
            raise

        items = _item_table(meta)
        stmt = update(items).where(items.c.id == item_id).values(values).returning(literal_column("*"))
        with self.engine.begin() as conn:
            updated = dict(conn.execute(stmt).mappings().one())

        for slot in values:
            if item.get(slot) and item[slot] != values[slot]:
                self.images.delete(item[slot])
        return updated

    def delete_image(self, table_name: str, item_id: int, slot: str, user_id: int) -> Dict[str, Any]:
        if slot not in IMAGE_SLOTS:
            raise BadRequestError("Invalid image slot")

        meta, _ = self._resolve(table_name, user_id)
        require_write(meta)
        item = self._fetch(meta, item_id, slot)
        require_row_owner(meta, item["created_by"], user_id, "modify")

        items = _item_table(meta)
        stmt = update(items).where(items.c.id == item_id).values({slot: None}).returning(literal_column("*"))
        with self.engine.begin() as conn:
            updated = dict(conn.execute(stmt).mappings().one())

        self.images.delete(item[slot])
        return updated

    def regenerate_qr(self, table_name: str, item_id: int, user_id: int) -> Dict[str, Any]:
        meta, _ = self._resolve(table_name, user_id)
        require_write(meta)
        item = self._fetch(meta, item_id, "qr_code")
        require_row_owner(meta, item["created_by"], user_id, "modify")

        qr_code_path = self.qr_codes.regenerate(
            meta.table_name, item_id, item["qr_code"], scope=meta.physical_name
        )
        items = _item_table(meta)
        stmt = update(items).where(items.c.id == item_id).values(qr_code=qr_code_path).returning(literal_column("*"))
        with self.engine.begin() as conn:
            updated = dict(conn.execute(stmt).mappings().one())
        return {"qr_code": qr_code_path, "item": updated}
