import unittest
from unittest.mock import MagicMock, patch

import redis
from sqlalchemy import select, update

from sqlbridge.core.security import verify_password
from sqlbridge.main import app
from sqlbridge.services.response_cache import RedisResponseCache, get_response_cache
from tests.base import BridgeApiTestBase, departments, users


class TableListingTests(BridgeApiTestBase):
    def test_list_tables(self):
        response = self.client.get("/api/tables")
        self.assertEqual(response.status_code, 200)
        names = [item["table_name"] for item in response.json()]
        self.assertEqual(names, ["departments", "users", "week_hours"])

    def test_list_tables_respects_deny_and_allow_lists(self):
        with patch("sqlbridge.services.tables.settings.TABLES_DENYLIST", "users"):
            names = [item["table_name"] for item in self.client.get("/api/tables").json()]
            self.assertNotIn("users", names)
            self.assertEqual(self.client.get("/api/tables/users").status_code, 404)

        with patch("sqlbridge.services.tables.settings.TABLES_ALLOWLIST", "departments"):
            names = [item["table_name"] for item in self.client.get("/api/tables").json()]
            self.assertEqual(names, ["departments"])

    def test_columns_metadata(self):
        response = self.client.get("/api/tables/users/columns")
        self.assertEqual(response.status_code, 200)
        columns = {item["name"]: item for item in response.json()}
        self.assertEqual(columns["id"]["kind"], "number")
        self.assertTrue(columns["id"]["primary_key"])
        self.assertTrue(columns["id"]["has_default"])
        self.assertFalse(columns["name"]["nullable"])
        self.assertEqual(columns["name"]["kind"], "text")
        self.assertEqual(columns["password"]["kind"], "password")
        self.assertEqual(columns["created_at"]["kind"], "datetime")


class TableQueryTests(BridgeApiTestBase):
    def _ids(self, query: str) -> list[int]:
        response = self.client.get(f"/api/tables/users{query}")
        self.assertEqual(response.status_code, 200, response.text)
        return [row["id"] for row in response.json()]

    def test_all_rows_without_query(self):
        response = self.client.get("/api/tables/users")
        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual(len(rows), 5)
        self.assertNotIn("password", rows[0])
        self.assertEqual(rows[0]["created_at"], "2024-01-01T09:00:00")

    def test_comparison_filters(self):
        self.assertEqual(self._ids("?age=gt.30&order=id.asc"), [3, 4])
        self.assertEqual(self._ids("?age=gte.30&order=id.asc"), [1, 3, 4])
        self.assertEqual(self._ids("?age=lt.28&order=id.asc"), [2])
        self.assertEqual(self._ids("?age=lte.28&order=id.asc"), [2, 5])

    def test_equality_forms(self):
        self.assertEqual(self._ids("?name=eq.Bob"), [2])
        self.assertEqual(self._ids("?name=Bob"), [2])
        self.assertEqual(self._ids("?age.gt=34&order=id.asc"), [3, 4])

    def test_in_filter(self):
        self.assertEqual(self._ids("?status=in.(inactive,suspended)&order=id.asc"), [2, 3])

    def test_like_and_ilike(self):
        self.assertEqual(self._ids("?name=like.J*n"), [5])
        self.assertEqual(self._ids("?name=ilike.*AR*&order=id.asc"), [3])

    def test_filters_are_combined_with_and(self):
        self.assertEqual(self._ids("?status=active&age=gt.29&order=id.asc"), [1, 4])

    def test_order_and_pagination(self):
        self.assertEqual(self._ids("?order=age.desc"), [3, 4, 1, 5, 2])
        self.assertEqual(self._ids("?order=age.desc&limit=2"), [3, 4])
        self.assertEqual(self._ids("?order=age.desc&limit=2&offset=2"), [1, 5])

    def test_bogus_order_is_ignored(self):
        response = self.client.get("/api/tables/users?order=bogus")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 5)

    def test_order_on_unknown_column_is_ignored(self):
        response = self.client.get("/api/tables/users?order=nope.asc")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 5)

    def test_invalid_limit_is_client_error(self):
        response = self.client.get("/api/tables/users?limit=10;DROP TABLE users")
        self.assertEqual(response.status_code, 400)
        self.assertIn("limit", response.json()["detail"])
        self.assertEqual(self._count(users), 5)

    def test_unknown_filter_column_is_client_error(self):
        response = self.client.get("/api/tables/users?nope=1")
        self.assertEqual(response.status_code, 400)
        self.assertIn("nope", response.json()["detail"])

    def test_password_columns_cannot_be_searched(self):
        with self.engine.begin() as conn:
            conn.execute(update(users).where(users.c.login == "bob").values(password="builder"))

        for query in ["?password=like.b*", "?password=eq.builder", "?password.eq=wrong", "?name=Bob&password=in.(a,b)"]:
            response = self.client.get(f"/api/tables/users{query}")
            self.assertEqual(response.status_code, 400, query)
            self.assertIn("password", response.json()["detail"])

    def test_order_on_password_column_is_ignored(self):
        with self.engine.begin() as conn:
            conn.execute(update(users).values(password="x"))
            conn.execute(update(users).where(users.c.id == 5).values(password="a"))
        self.assertEqual(self._ids("?order=password.asc&limit=1"), [1])

    def test_malformed_in_list_is_client_error(self):
        response = self.client.get("/api/tables/users?status=in.(a,b")
        self.assertEqual(response.status_code, 400)

    def test_invalid_table_name(self):
        response = self.client.get("/api/tables/users;drop")
        self.assertEqual(response.status_code, 400)
        self.assertIn("users;drop", response.json()["detail"])

    def test_missing_table(self):
        response = self.client.get("/api/tables/missing_table")
        self.assertEqual(response.status_code, 404)

    def test_results_are_cached_until_a_write(self):
        first = self.client.get("/api/tables/departments?order=id.asc")
        self.assertEqual(len(first.json()), 2)

        # Bypass the API so only the cached copy can answer.
        with self.engine.begin() as conn:
            conn.execute(departments.insert().values(id=3, name="Sales"))
        cached = self.client.get("/api/tables/departments?order=id.asc")
        self.assertEqual(cached.json(), first.json())

        created = self.client.post("/api/tables/departments", json={"name": "Support"})
        self.assertEqual(created.status_code, 201)
        fresh = self.client.get("/api/tables/departments?order=id.asc")
        self.assertEqual([row["name"] for row in fresh.json()], ["Media", "Finance", "Sales", "Support"])

    def test_committed_write_survives_cache_outage(self):
        client = MagicMock()
        client.get.return_value = None
        client.scan_iter.side_effect = redis.ConnectionError("down")
        app.dependency_overrides[get_response_cache] = lambda: RedisResponseCache(client)

        response = self.client.post("/api/tables/departments", json={"name": "Support"})
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(self._count(departments), 3)


class TableRowTests(BridgeApiTestBase):
    def test_get_row(self):
        response = self.client.get("/api/tables/users/2")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Bob")

    def test_get_row_not_found_and_bad_id(self):
        self.assertEqual(self.client.get("/api/tables/users/99").status_code, 404)
        self.assertEqual(self.client.get("/api/tables/users/abc").status_code, 400)

    def test_create_row_hashes_password(self):
        response = self.client.post(
            "/api/tables/users",
            json={"name": "Eve", "login": "eve", "password": "secret", "age": 22, "created_at": "2024-06-01T10:00:00"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(body["name"], "Eve")
        self.assertNotIn("password", body)
        self.assertEqual(body["created_at"], "2024-06-01T10:00:00")

        with self.engine.connect() as conn:
            stored = conn.execute(select(users.c.password).where(users.c.login == "eve")).scalar_one()
        self.assertNotEqual(stored, "secret")
        self.assertTrue(verify_password("secret", stored))

    def test_create_row_rejects_unknown_columns(self):
        response = self.client.post("/api/tables/users", json={"name": "X", "nope": 1})
        self.assertEqual(response.status_code, 400)
        self.assertIn("nope", response.json()["detail"])

    def test_create_row_rejects_null_in_required_column(self):
        response = self.client.post("/api/tables/users", json={"name": None})
        self.assertEqual(response.status_code, 400)

    def test_create_row_rejects_non_object_body(self):
        response = self.client.post("/api/tables/users", json=[1, 2])
        self.assertEqual(response.status_code, 400)

    def test_constraint_violation_is_opaque_server_error(self):
        response = self.client.post("/api/tables/departments", json={"name": "Media"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Failed to create record")
        self.assertEqual(self._count(departments), 2)

    def test_update_row_ignores_primary_key_in_body(self):
        response = self.client.put("/api/tables/users/2", json={"id": 77, "age": 26})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["id"], 2)
        self.assertEqual(response.json()["age"], 26)

    def test_update_row_errors(self):
        self.assertEqual(self.client.put("/api/tables/users/99", json={"age": 1}).status_code, 404)
        self.assertEqual(self.client.put("/api/tables/users/2", json={"id": 2}).status_code, 400)

    def test_update_requires_single_primary_key(self):
        response = self.client.put("/api/tables/week_hours/1", json={"hours": 8})
        self.assertEqual(response.status_code, 400)

    def test_delete_row(self):
        response = self.client.delete("/api/tables/users/5")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})
        self.assertEqual(self._count(users), 4)
        self.assertEqual(self.client.delete("/api/tables/users/5").status_code, 404)


if __name__ == "__main__":
    unittest.main()
