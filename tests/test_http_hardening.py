import os
import unittest

from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from sqlbridge.core.http_hardening import table_of
from sqlbridge.main import app


class HttpHardeningTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()

    def test_health_has_security_headers_and_request_id(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertEqual(response.headers.get("x-frame-options"), "DENY")
        self.assertEqual(response.headers.get("referrer-policy"), "no-referrer")
        self.assertEqual(response.headers.get("cache-control"), "no-store")

        request_id = response.headers.get("x-request-id")
        self.assertIsNotNone(request_id)
        self.assertRegex(str(request_id), r"^[A-Za-z0-9._-]{1,128}$")

    def test_valid_request_id_is_preserved(self):
        external_request_id = "bridge-check-2024_06_01"
        response = self.client.get("/health", headers={"X-Request-ID": external_request_id})
        self.assertEqual(response.headers.get("x-request-id"), external_request_id)

    def test_invalid_request_id_is_replaced(self):
        bad_request_id = "bad id with spaces"
        response = self.client.get("/health", headers={"X-Request-ID": bad_request_id})
        response_request_id = response.headers.get("x-request-id")
        self.assertNotEqual(response_request_id, bad_request_id)
        self.assertRegex(str(response_request_id), r"^[A-Za-z0-9._-]{1,128}$")

    def test_error_response_keeps_security_headers(self):
        response = self.client.get("/api/tables/bad;name")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertTrue(bool(response.headers.get("x-request-id")))

    def test_cors_wildcard_does_not_allow_credentials(self):
        response = self.client.get("/health", headers={"Origin": "http://localhost:3000"})
        self.assertEqual(response.headers.get("access-control-allow-origin"), "*")
        self.assertIsNone(response.headers.get("access-control-allow-credentials"))

    def test_access_log_names_the_table(self):
        with self.assertLogs("sqlbridge.http", level="INFO") as logs:
            response = self.client.get("/api/tables/bad;name/columns")
        self.assertEqual(response.status_code, 400)
        self.assertTrue(any("table=bad;name" in line and "status=400" in line for line in logs.output))
        self.assertRegex(response.headers.get("x-response-time-ms", ""), r"^\d+\.\d$")

    def test_table_of(self):
        self.assertEqual(table_of("/api/tables/users/5"), "users")
        self.assertEqual(table_of("/api/tables"), "-")
        self.assertEqual(table_of("/health"), "-")


if __name__ == "__main__":
    unittest.main()
