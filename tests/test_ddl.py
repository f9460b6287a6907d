"""Tests for the DDL manager against the test database.

Copyright (c) Bryn Gwalad 2025
"""

import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import unittest
from datetime import timedelta

from sqlalchemy import inspect
from sqlmodel import select

from api.models import CustomField, CustomLookupTable, CustomTable, TablePermission
from helpers import create_user, unique_name
from utils.catalog import grant_permission
from utils.database import get_engine, get_session, init_db
from utils.ddl import (
    BASELINE_COLUMNS,
    add_field_to_table,
    create_custom_table,
    default_literal,
    delete_custom_table,
    index_name,
)
from utils.errors import BadRequestError
from utils.identifiers import PhysicalIdentifier, extract_username

COLOR = {"field_name": "color", "field_label": "Color", "field_type": "text", "is_required": True}
PRICE = {"field_name": "price", "field_label": "Price", "field_type": "currency"}


class DefaultLiteralTest(unittest.TestCase):
    def test_accepted_literals(self):
        self.assertIsNone(default_literal(None))
        self.assertIsNone(default_literal(""))
        self.assertEqual(default_literal(5), "5")
        self.assertEqual(default_literal("-2.50"), "-2.50")
        self.assertEqual(default_literal("'blue'"), "'blue'")
        self.assertEqual(default_literal("'it''s'"), "'it''s'")
        self.assertEqual(default_literal("current_date"), "CURRENT_DATE")
        self.assertEqual(default_literal(True), "TRUE")

    def test_expressions_are_refused(self):
        for value in ("blue", "'a'; DROP TABLE users; --", "now()", "1 + 1", "'unterminated"):
            with self.assertRaises(BadRequestError, msg=value):
                default_literal(value)


class IndexNameTest(unittest.TestCase):
    def test_short_and_long_names(self):
        self.assertEqual(index_name(PhysicalIdentifier("bob_data_widgets")), "idx_bob_data_widgets_created_by")
        long_name = index_name(PhysicalIdentifier("a" * 20 + "_data_" + "b" * 37))
        self.assertLessEqual(len(long_name), 63)
        self.assertTrue(long_name.startswith("idx_"))


class DDLManagerTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        init_db()
        cls.engine = get_engine()

    def setUp(self):
        self.user = create_user()
        self.table_name = unique_name("widgets")
        self.physical = f"{extract_username(self.user.email)}_data_{self.table_name}"

    def _create(self, fields=None, user=None, table_name=None):
        user = user or self.user
        return create_custom_table(
            self.engine,
            {"table_name": table_name or self.table_name, "display_name": "Widgets"},
            fields if fields is not None else [COLOR, PRICE],
            user.id,
            user.email,
        )

    def _catalog_row(self, user=None):
        user = user or self.user
        with get_session() as session:
            return session.exec(
                select(CustomTable).where(
                    CustomTable.table_name == self.table_name, CustomTable.created_by == user.id
                )
            ).first()

    def test_create_builds_catalog_and_physical_table(self):
        result = self._create()
        self.assertEqual(result["table_name"], self.physical)

        inspector = inspect(self.engine)
        self.assertTrue(inspector.has_table(self.physical))
        columns = [column["name"] for column in inspector.get_columns(self.physical)]
        self.assertEqual(columns, list(BASELINE_COLUMNS) + ["color", "price"])
        indexes = [index["name"] for index in inspector.get_indexes(self.physical)]
        self.assertIn(index_name(PhysicalIdentifier(self.physical)), indexes)

        with get_session() as session:
            fields = session.exec(
                select(CustomField).where(CustomField.table_id == result["table_id"]).order_by(CustomField.display_order)
            ).all()
            self.assertEqual([(f.field_name, f.display_order) for f in fields], [("color", 0), ("price", 1)])
            self.assertTrue(fields[0].is_required)
            self.assertTrue(fields[1].show_in_table)

    def test_name_is_unique_per_creator_only(self):
        self._create()
        with self.assertRaises(BadRequestError):
            self._create()

        other = create_user()
        self._create(user=other)
        self.assertIsNotNone(self._catalog_row(other))

    def test_failure_rolls_back_everything(self):
        bad_fields = [COLOR, {"field_name": "blob", "field_label": "Blob", "field_type": "binary"}]
        with self.assertRaises(BadRequestError):
            self._create(fields=bad_fields)
        self.assertIsNone(self._catalog_row())
        self.assertFalse(inspect(self.engine).has_table(self.physical))

    def test_invalid_field_lists(self):
        cases = [
            [],
            [{"field_name": "color", "field_label": "Color"}],
            [COLOR, COLOR],
            [{"field_name": "quantity", "field_label": "Qty", "field_type": "integer"}],
            [{"field_name": "Color", "field_label": "Color", "field_type": "text"}],
        ]
        for fields in cases:
            with self.assertRaises(BadRequestError, msg=fields):
                self._create(fields=fields)
        self.assertIsNone(self._catalog_row())

    def test_lookup_reference_by_name(self):
        with get_session() as session:
            lookup = CustomLookupTable(table_name=unique_name("lookup"), display_name="Colors", created_by=self.user.id)
            session.add(lookup)
            session.commit()
            session.refresh(lookup)
            lookup_id, lookup_name = lookup.id, lookup.table_name

        field = dict(COLOR, field_type="select", lookup_table_id=lookup_name)
        result = self._create(fields=[field])
        with get_session() as session:
            stored = session.exec(select(CustomField).where(CustomField.table_id == result["table_id"])).one()
            self.assertEqual(stored.lookup_table_id, lookup_id)

    def test_malformed_lookup_reference_is_dropped(self):
        for reference in ({"id": 1}, [1], True):
            table_name = unique_name("widgets")
            field = dict(COLOR, field_type="select", lookup_table_id=reference)
            result = self._create(fields=[field], table_name=table_name)
            with get_session() as session:
                stored = session.exec(select(CustomField).where(CustomField.table_id == result["table_id"])).one()
                self.assertIsNone(stored.lookup_table_id, msg=reference)

    def test_route_segment_is_not_a_table_name(self):
        with self.assertRaises(BadRequestError):
            self._create(table_name="lookups")
        self.assertFalse(inspect(self.engine).has_table(f"{extract_username(self.user.email)}_data_lookups"))

    def test_timestamps_are_timezone_aware(self):
        result = self._create()
        grantee = create_user()
        with get_session() as session:
            grant_permission(session, session.get(CustomTable, result["table_id"]), grantee.id, "view", self.user.id)

        with get_session() as session:
            custom_table = session.get(CustomTable, result["table_id"])
            grant = session.exec(select(TablePermission).where(TablePermission.table_id == result["table_id"])).one()
            for value in (custom_table.created_at, custom_table.updated_at, grant.granted_at):
                self.assertIsNotNone(value.tzinfo)
                self.assertEqual(value.utcoffset(), timedelta(0))

    def test_delete_drops_table_and_cascades(self):
        result = self._create()
        grantee = create_user()
        with get_session() as session:
            session.add(TablePermission(table_id=result["table_id"], user_id=grantee.id, permission_level="view"))
            session.commit()

        delete_custom_table(self.engine, self.table_name, self.user.id, self.user.email)

        self.assertFalse(inspect(self.engine).has_table(self.physical))
        with get_session() as session:
            self.assertIsNone(session.get(CustomTable, result["table_id"]))
            self.assertEqual(session.exec(select(CustomField).where(CustomField.table_id == result["table_id"])).all(), [])
            self.assertEqual(
                session.exec(select(TablePermission).where(TablePermission.table_id == result["table_id"])).all(), []
            )

    def test_delete_only_touches_callers_table(self):
        self._create()
        other = create_user()
        with self.assertRaises(BadRequestError):
            delete_custom_table(self.engine, self.table_name, other.id, other.email)
        self.assertTrue(inspect(self.engine).has_table(self.physical))

    def test_add_field_appends_column_and_definition(self):
        result = self._create()
        add_field_to_table(
            self.engine,
            self.table_name,
            {"field_name": "size", "field_label": "Size", "field_type": "text", "default_value": "'medium'", "is_bold": True},
            self.user.id,
            self.user.email,
        )

        columns = [column["name"] for column in inspect(self.engine).get_columns(self.physical)]
        self.assertEqual(columns[-1], "size")
        with get_session() as session:
            field = session.exec(
                select(CustomField).where(CustomField.table_id == result["table_id"], CustomField.field_name == "size")
            ).one()
            self.assertEqual(field.display_order, 2)
            self.assertTrue(field.is_bold)

    def test_add_field_rejections(self):
        self._create()
        cases = [
            {"field_name": "color", "field_label": "Again", "field_type": "text"},
            {"field_name": "qr_code", "field_label": "QR", "field_type": "text"},
            {"field_name": "notes", "field_label": "Notes", "field_type": "json"},
            {"field_name": "notes", "field_label": "Notes", "field_type": "text", "default_value": "1); DROP TABLE users; --"},
        ]
        for field in cases:
            with self.assertRaises(BadRequestError, msg=field):
                add_field_to_table(self.engine, self.table_name, field, self.user.id, self.user.email)

        columns = [column["name"] for column in inspect(self.engine).get_columns(self.physical)]
        self.assertNotIn("notes", columns)

    def test_add_field_requires_own_table(self):
        self._create()
        other = create_user()
        with self.assertRaises(BadRequestError):
            add_field_to_table(
                self.engine,
                self.table_name,
                {"field_name": "notes", "field_label": "Notes", "field_type": "text"},
                other.id,
                other.email,
            )


if __name__ == "__main__":
    unittest.main()
