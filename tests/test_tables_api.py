"""Tests for the table management and lookup routes.

Copyright (c) Bryn Gwalad 2025
"""

import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import unittest

from fastapi.testclient import TestClient

from api.main import app
from helpers import auth, create_user, unique_name
from utils.database import init_db

FIELDS = [
    {"field_name": "color", "field_label": "Color", "field_type": "text", "is_required": True},
    {"field_name": "weight", "field_label": "Weight", "field_type": "number"},
]


class TableRoutesTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        init_db()
        cls.client = TestClient(app)

    def setUp(self):
        self.owner = create_user()
        self.other = create_user()
        self.table_name = unique_name("widgets")

    def _create_table(self, user=None, table_name=None, **table):
        table.setdefault("display_name", "Widgets")
        table["table_name"] = table_name or self.table_name
        return self.client.post(
            "/api/tables", json={"table": table, "fields": FIELDS}, headers=auth(user or self.owner)
        )

    def test_identity_is_required(self):
        self.assertEqual(self.client.get("/api/tables").status_code, 401)
        self.assertEqual(self.client.get("/api/tables", headers={"X-User-Id": "abc"}).status_code, 401)
        resp = self.client.get("/api/tables", headers={"X-User-Id": "999999999"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["status"], 401)

    def test_create_list_and_definition(self):
        resp = self._create_table(description="Things", is_shared=False)
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["message"], "Table created successfully")
        self.assertTrue(body["tableName"].endswith(f"_data_{self.table_name}"))

        resp = self.client.get("/api/tables", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 200)
        tables = {t["table_name"]: t for t in resp.json()["tables"]}
        self.assertEqual(tables[self.table_name]["user_permission"], "owner")
        self.assertEqual(tables[self.table_name]["item_count"], 0)
        self.assertEqual(tables[self.table_name]["creator_email"], self.owner.email)

        resp = self.client.get(f"/api/tables/{self.table_name}/definition", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 200)
        definition = resp.json()
        self.assertEqual(definition["table"]["id"], body["tableId"])
        self.assertEqual([f["field_name"] for f in definition["fields"]], ["color", "weight"])

        resp = self.client.get(f"/api/tables/{self.table_name}", headers=auth(self.owner))
        self.assertEqual(resp.json()["table"]["description"], "Things")

    def test_create_validation(self):
        resp = self.client.post("/api/tables", json={"table": {"table_name": "x"}}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Missing required fields: table and fields")

        resp = self.client.post(
            "/api/tables", json={"table": {"table_name": "x"}, "fields": FIELDS}, headers=auth(self.owner)
        )
        self.assertEqual(resp.status_code, 400)

        resp = self._create_table(table_name="Bad-Name")
        self.assertEqual(resp.status_code, 400)

        resp = self._create_table(table_name="select")
        self.assertEqual(resp.status_code, 400)

        resp = self._create_table(table_name="lookups")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Table name 'lookups' is reserved")
        self.assertIn("lookups", self.client.get("/api/tables/lookups", headers=auth(self.owner)).json())

        self.assertEqual(self._create_table().status_code, 201)
        resp = self._create_table()
        self.assertEqual(resp.status_code, 400)
        self.assertIn("already exists", resp.json()["error"])

    def test_definition_not_found_and_forbidden(self):
        resp = self.client.get(f"/api/tables/{unique_name()}/definition", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 404)

        self._create_table()
        resp = self.client.get(f"/api/tables/{self.table_name}/definition", headers=auth(self.other))
        self.assertEqual(resp.status_code, 403)

    def test_update_settings(self):
        self._create_table()
        resp = self.client.put(
            f"/api/tables/{self.table_name}",
            json={"display_name": "Gadgets", "is_shared": True},
            headers=auth(self.owner),
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["table"]["display_name"], "Gadgets")
        self.assertTrue(resp.json()["table"]["is_shared"])

        # shared tables are visible to everyone as view
        resp = self.client.get(f"/api/tables/{self.table_name}/definition", headers=auth(self.other))
        self.assertEqual(resp.json()["table"]["user_permission"], "view")

        resp = self.client.put(f"/api/tables/{self.table_name}", json={}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 400)

        resp = self.client.put(f"/api/tables/{self.table_name}", json={"icon": "MdStar"}, headers=auth(self.other))
        self.assertEqual(resp.status_code, 403)

        resp = self.client.put(f"/api/tables/{unique_name()}", json={"icon": "MdStar"}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 404)

    def test_permissions_lifecycle(self):
        self._create_table()
        path = f"/api/tables/{self.table_name}/permissions"

        resp = self.client.post(path, json={"user_id": self.other.id, "permission_level": "edit"}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 200)

        resp = self.client.get(path, headers=auth(self.owner))
        permissions = resp.json()["permissions"]
        self.assertEqual(len(permissions), 1)
        self.assertEqual(permissions[0]["email"], self.other.email)
        self.assertEqual(permissions[0]["permission_level"], "edit")

        # granting again updates the level
        self.client.post(path, json={"user_id": self.other.id, "permission_level": "view"}, headers=auth(self.owner))
        permissions = self.client.get(path, headers=auth(self.owner)).json()["permissions"]
        self.assertEqual([p["permission_level"] for p in permissions], ["view"])

        tables = self.client.get("/api/tables", headers=auth(self.other)).json()["tables"]
        self.assertIn(self.table_name, [t["table_name"] for t in tables])

        self.assertEqual(self.client.get(path, headers=auth(self.other)).status_code, 403)

        resp = self.client.delete(f"{path}/{self.other.id}", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 200)
        resp = self.client.delete(f"{path}/{self.other.id}", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 404)

        resp = self.client.get(f"/api/tables/{self.table_name}/definition", headers=auth(self.other))
        self.assertEqual(resp.status_code, 403)

    def test_permission_validation(self):
        self._create_table()
        path = f"/api/tables/{self.table_name}/permissions"
        resp = self.client.post(path, json={"user_id": self.other.id, "permission_level": "owner"}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(path, json={"permission_level": "view"}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(path, json={"user_id": 999999999, "permission_level": "view"}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 404)
        resp = self.client.post(path, json={"user_id": self.owner.id, "permission_level": "view"}, headers=auth(self.other))
        self.assertEqual(resp.status_code, 403)

    def test_add_field_route(self):
        self._create_table()
        path = f"/api/tables/{self.table_name}/fields"
        resp = self.client.post(
            path, json={"field_name": "notes", "field_label": "Notes", "field_type": "textarea"}, headers=auth(self.owner)
        )
        self.assertEqual(resp.status_code, 200)
        fields = self.client.get(f"/api/tables/{self.table_name}/definition", headers=auth(self.owner)).json()["fields"]
        self.assertEqual(fields[-1]["field_name"], "notes")

        resp = self.client.post(path, json={"field_name": "notes"}, headers=auth(self.owner))
        self.assertEqual(resp.status_code, 400)

    def test_delete_table(self):
        self._create_table()
        resp = self.client.delete(f"/api/tables/{self.table_name}", headers=auth(self.other))
        self.assertEqual(resp.status_code, 400)

        resp = self.client.delete(f"/api/tables/{self.table_name}", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 200)
        resp = self.client.get(f"/api/tables/{self.table_name}/definition", headers=auth(self.owner))
        self.assertEqual(resp.status_code, 404)

    def test_admin_listing(self):
        self._create_table()
        self.assertEqual(self.client.get("/api/tables/admin/all", headers=auth(self.owner)).status_code, 403)

        admin = create_user(role="admin")
        resp = self.client.get("/api/tables/admin/all", headers=auth(admin))
        self.assertEqual(resp.status_code, 200)
        entry = next(t for t in resp.json()["tables"] if t["table_name"] == self.table_name)
        self.assertEqual(entry["field_count"], 2)
        self.assertEqual(entry["permission_count"], 0)


class LookupRoutesTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        init_db()
        cls.client = TestClient(app)

    def setUp(self):
        self.admin = create_user(role="admin")
        self.user = create_user()

    def _create_lookup(self, **body):
        body.setdefault("table_name", unique_name("colors"))
        body.setdefault("display_name", "Colors")
        return self.client.post("/api/tables/lookups", json=body, headers=auth(self.admin))

    def test_only_admins_create(self):
        resp = self.client.post(
            "/api/tables/lookups", json={"table_name": "sizes", "display_name": "Sizes"}, headers=auth(self.user)
        )
        self.assertEqual(resp.status_code, 403)

        resp = self._create_lookup()
        self.assertEqual(resp.status_code, 201)
        self.assertTrue(resp.json()["lookup"]["table_name"].startswith("lookup_colors_"))

    def test_values_and_visibility(self):
        lookup = self._create_lookup(is_shared=False).json()["lookup"]
        base = f"/api/tables/lookups/{lookup['id']}"

        first = self.client.post(f"{base}/values", json={"value_data": {"name": "Red"}}, headers=auth(self.admin))
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["value"]["display_order"], 1)
        second = self.client.post(f"{base}/values", json={"value_data": {"name": "Blue"}}, headers=auth(self.admin))
        self.assertEqual(second.json()["value"]["display_order"], 2)

        resp = self.client.get(f"/api/tables/lookups/{lookup['table_name']}", headers=auth(self.admin))
        self.assertEqual([v["value_data"]["name"] for v in resp.json()["values"]], ["Red", "Blue"])

        self.assertEqual(self.client.get(base, headers=auth(self.user)).status_code, 403)
        listed = self.client.get("/api/tables/lookups", headers=auth(self.user)).json()["lookups"]
        self.assertNotIn(lookup["id"], [entry["id"] for entry in listed])

        self.client.put(base, json={"is_shared": True}, headers=auth(self.admin))
        listed = self.client.get("/api/tables/lookups", headers=auth(self.user)).json()["lookups"]
        entry = next(entry for entry in listed if entry["id"] == lookup["id"])
        self.assertEqual(entry["value_count"], 2)

        value_id = first.json()["value"]["id"]
        resp = self.client.put(f"{base}/values/{value_id}", json={"value_data": {"name": "Crimson"}}, headers=auth(self.admin))
        self.assertEqual(resp.json()["value"]["value_data"], {"name": "Crimson"})
        resp = self.client.put(f"{base}/values/{value_id}", json={"display_order": 5}, headers=auth(self.user))
        self.assertEqual(resp.status_code, 403)

        self.client.delete(f"{base}/values/{value_id}", headers=auth(self.admin))
        exported = self.client.get(f"{base}/export", headers=auth(self.user)).json()["data"]
        self.assertEqual(exported, [{"name": "Blue"}])

    def test_import(self):
        lookup = self._create_lookup().json()["lookup"]
        base = f"/api/tables/lookups/{lookup['id']}"
        resp = self.client.post(
            f"{base}/import", json={"csv_data": [{"name": "S"}, {"name": "M"}, {"name": "L"}]}, headers=auth(self.admin)
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["message"], "Imported 3 values successfully")
        values = self.client.get(base, headers=auth(self.admin)).json()["values"]
        self.assertEqual([v["display_order"] for v in values], [1, 2, 3])

        resp = self.client.post(f"{base}/import", json={"csv_data": "S,M,L"}, headers=auth(self.admin))
        self.assertEqual(resp.status_code, 400)

    def test_referenced_lookup_cannot_be_deleted(self):
        lookup = self._create_lookup().json()["lookup"]
        table_name = unique_name("shirts")
        field = {
            "field_name": "color",
            "field_label": "Color",
            "field_type": "select",
            "lookup_table_id": lookup["id"],
        }
        resp = self.client.post(
            "/api/tables",
            json={"table": {"table_name": table_name, "display_name": "Shirts"}, "fields": [field]},
            headers=auth(self.admin),
        )
        self.assertEqual(resp.status_code, 201)
        definition = self.client.get(f"/api/tables/{table_name}/definition", headers=auth(self.admin)).json()
        self.assertEqual(definition["fields"][0]["lookup_table_name"], lookup["table_name"])

        resp = self.client.delete(f"/api/tables/lookups/{lookup['id']}", headers=auth(self.admin))
        self.assertEqual(resp.status_code, 400)

        self.client.delete(f"/api/tables/{table_name}", headers=auth(self.admin))
        resp = self.client.delete(f"/api/tables/lookups/{lookup['id']}", headers=auth(self.admin))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get(f"/api/tables/lookups/{lookup['id']}", headers=auth(self.admin)).status_code, 404)

    def test_bad_lookup_id_is_a_bad_request(self):
        resp = self.client.put("/api/tables/lookups/abc", json={"is_shared": True}, headers=auth(self.admin))
        self.assertEqual(resp.status_code, 400)
        self.assertIn("validationErrors", resp.json())


if __name__ == "__main__":
    unittest.main()
