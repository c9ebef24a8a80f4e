import time
import unittest

import fakeredis
from fastapi.testclient import TestClient

from itembase.app import create_app
from itembase.config import Settings
from itembase.dependencies import build_context
from itembase.kv import RedisDbClient
from itembase.models import SEED_EMAIL, SEED_PASSWORD


def _settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        database_url=None,
        redis_url=None,
        remote_api_url=None,
        snapshot_dir=None,
        simulate_latency=False,
        environment="test",
    )
    values.update(overrides)
    return Settings(**values)


class ItemApiTests(unittest.TestCase):
    settings_overrides: dict = {}
    token_prefix = "local_"

    def setUp(self):
        self.context = build_context(_settings(**self.settings_overrides))
        self.client = TestClient(create_app(self.context))

    def _login(self) -> str:
        response = self.client.post(
            "/api/auth/login", json={"email": SEED_EMAIL, "password": SEED_PASSWORD}
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["data"]["session"]["access_token"]

    def _auth(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def test_login_create_update_delete_flow(self):
        token = self._login()
        self.assertTrue(token.startswith(self.token_prefix))
        headers = self._auth(token)

        listed = self.client.get("/api/data", headers=headers)
        self.assertEqual(listed.status_code, 200)
        self.assertEqual(len(listed.json()["data"]), 2)

        created = self.client.post(
            "/api/data",
            headers=headers,
            json={"name": "X", "description": "Y", "status": "active"},
        )
        self.assertEqual(created.status_code, 201)
        item = created.json()["data"]
        self.assertEqual(item["name"], "X")
        self.assertIsNone(item["category"])
        self.assertIsNone(item["quantity"])

        listed = self.client.get("/api/data", headers=headers).json()["data"]
        self.assertEqual(len(listed), 3)
        self.assertEqual(listed[0]["id"], item["id"])

        time.sleep(0.01)
        updated = self.client.put(
            f"/api/data/{item['id']}", headers=headers, json={"status": "completed"}
        )
        self.assertEqual(updated.status_code, 200)
        body = updated.json()["data"]
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["name"], "X")
        self.assertEqual(body["created_at"], item["created_at"])
        self.assertNotEqual(body["updated_at"], item["updated_at"])

        deleted = self.client.delete(f"/api/data/{item['id']}", headers=headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["data"]["message"], "Item deleted successfully")

        listed = self.client.get("/api/data", headers=headers).json()["data"]
        self.assertEqual(len(listed), 2)

        again = self.client.delete(f"/api/data/{item['id']}", headers=headers)
        self.assertEqual(again.status_code, 404)
        self.assertEqual(again.json(), {"error": "Item not found"})

    def test_session_round_trip(self):
        token = self._login()
        response = self.client.get("/api/auth/session", headers=self._auth(token))
        self.assertEqual(response.status_code, 200)
        session = response.json()["data"]["session"]
        self.assertEqual(session["user"]["email"], SEED_EMAIL)

    def test_logout(self):
        token = self._login()
        for _ in range(2):
            response = self.client.post("/api/auth/logout", headers=self._auth(token))
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"data": {"message": "Logged out successfully"}})

    def test_login_errors(self):
        missing = self.client.post("/api/auth/login", json={"email": SEED_EMAIL})
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json(), {"error": "Email and password are required"})

        no_body = self.client.post("/api/auth/login")
        self.assertEqual(no_body.status_code, 400)

        wrong = self.client.post(
            "/api/auth/login", json={"email": SEED_EMAIL, "password": "nope"}
        )
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.json(), {"error": "Invalid email or password"})

    def test_data_requires_bearer_token(self):
        for headers in ({}, {"Authorization": "Token abc"}, self._auth("bogus")):
            response = self.client.get("/api/data", headers=headers)
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.json(), {"error": "Unauthorized"})

    def test_create_validation(self):
        headers = self._auth(self._login())
        response = self.client.post("/api/data", headers=headers, json={"name": "only"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Name, description, and status are required"})

        response = self.client.post(
            "/api/data",
            headers=headers,
            json={"name": "n", "description": "d", "status": "s", "quantity": "lots"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_missing_item_id(self):
        headers = self._auth(self._login())
        for call in (self.client.put, self.client.delete):
            response = call("/api/data/", headers=headers)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json(), {"error": "Item ID is required"})

    def test_update_unknown_item(self):
        headers = self._auth(self._login())
        response = self.client.put("/api/data/missing", headers=headers, json={"status": "x"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Item not found"})

    def test_unknown_endpoint(self):
        response = self.client.get("/api/nothing-here")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "API endpoint not found"})

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["environment"], "test")

    def test_backend_status_and_recheck(self):
        status = self.client.get("/api/backend/status").json()["data"]
        self.assertEqual(status["active"], self.token_prefix.rstrip("_"))
        self.assertTrue(status["backends"][status["active"]]["healthy"])
        self.assertTrue(status["backends"]["local"]["healthy"])

        recheck = self.client.post("/api/backend/recheck")
        self.assertEqual(recheck.status_code, 200)
        self.assertEqual(recheck.json()["data"]["active"], status["active"])

    def test_session_without_token_is_null(self):
        self._login()
        response = self.client.get("/api/auth/session")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"data": {"session": None}})

        response = self.client.get("/api/auth/session", headers={"Authorization": "Bearer "})
        self.assertEqual(response.json(), {"data": {"session": None}})


class RelationalItemApiTests(ItemApiTests):
    """Same flows with the relational backend active (SQLite in memory)."""

    settings_overrides = {"database_url": "sqlite+pysqlite:///:memory:"}
    token_prefix = "relational_"

    def test_logout_ends_session(self):
        token = self._login()
        self.client.post("/api/auth/logout", headers=self._auth(token))
        response = self.client.get("/api/data", headers=self._auth(token))
        self.assertEqual(response.status_code, 401)


class KeyValueItemApiTests(ItemApiTests):
    """Same flows with the Redis backend active (fakeredis)."""

    token_prefix = "kv_"

    def setUp(self):
        super().setUp()
        self.context.selector.kv = RedisDbClient(client=fakeredis.FakeRedis(), key_prefix="test")


if __name__ == "__main__":
    unittest.main()
