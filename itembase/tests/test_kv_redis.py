import asyncio
import unittest
from unittest.mock import MagicMock, patch

import fakeredis
from redis import exceptions as redis_exceptions

from itembase.errors import BackendUnavailable
from itembase.kv import RedisDbClient
from itembase.models import SEED_EMAIL, SEED_PASSWORD, SEED_USER_ID


class RedisDbClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.redis = fakeredis.FakeRedis()
        self.db = RedisDbClient(client=self.redis, key_prefix="test")
        self.assertTrue(await self.db.connect())

    async def asyncTearDown(self):
        await self.db.close()

    async def _create(self, **overrides):
        payload = {
            "name": "Kettle",
            "description": "Electric kettle",
            "status": "active",
            "user_id": SEED_USER_ID,
        }
        payload.update(overrides)
        return await self.db.create_item(payload)

    async def test_seed_writes_indexes(self):
        self.assertEqual(self.redis.hget("test:users:by_email", SEED_EMAIL), SEED_USER_ID.encode())
        self.assertEqual(self.redis.zcard(f"test:data_items:by_user:{SEED_USER_ID}"), 2)
        self.assertIsNotNone(self.redis.get("test:data_items:1"))

    def test_seed_claims_email_without_overwriting(self):
        pipe = MagicMock()
        pipe.hlen.return_value = 0
        client = MagicMock()
        client.transaction.side_effect = lambda func, *watches, **kwargs: func(pipe)
        db = RedisDbClient(client=client, key_prefix="test")

        db._seed_sync()

        client.transaction.assert_called_once()
        self.assertEqual(client.transaction.call_args.args[1], "test:users:by_email")
        pipe.hsetnx.assert_called_once_with("test:users:by_email", SEED_EMAIL, SEED_USER_ID)
        pipe.hset.assert_not_called()

    async def test_connect_again_does_not_reseed(self):
        await self._create()
        self.assertTrue(await self.db.connect())
        self.assertEqual(len(await self.db.fetch_data(SEED_USER_ID)), 3)

    async def test_session_without_token_is_first_user(self):
        session = await self.db.get_session(None)
        self.assertEqual(session.user.email, SEED_EMAIL)
        self.assertEqual(session.access_token, f"kv_{SEED_USER_ID}")

    async def test_token_from_another_backend_is_ignored(self):
        self.assertIsNone(await self.db.get_session(f"local_{SEED_USER_ID}"))

    async def test_delete_removes_index_entry(self):
        created = await self._create()
        await self.db.delete_item(created.id)
        members = self.redis.zrange(f"test:data_items:by_user:{SEED_USER_ID}", 0, -1)
        self.assertNotIn(created.id.encode(), members)

    async def test_concurrent_updates_keep_every_change(self):
        created = await self._create(quantity=1)

        await asyncio.gather(
            self.db.update_item(created.id, {"name": "Renamed"}),
            self.db.update_item(created.id, {"quantity": 9}),
            self.db.update_item(created.id, {"category": "kitchen"}),
            self.db.update_item(created.id, {"status": "inactive"}),
        )

        final = await self.db.get_item(created.id)
        self.assertEqual(final.name, "Renamed")
        self.assertEqual(final.quantity, 9)
        self.assertEqual(final.category, "kitchen")
        self.assertEqual(final.status, "inactive")
        self.assertEqual(final.created_at, created.created_at)

    async def test_reset_only_touches_own_prefix(self):
        self.redis.set("other:key", "keep")
        await self._create()
        await self.db.reset()
        self.assertEqual(self.redis.get("other:key"), b"keep")
        self.assertEqual(len(await self.db.fetch_data(SEED_USER_ID)), 2)

    async def test_lost_connection_reports_unavailable(self):
        with patch.object(self.redis, "get", side_effect=redis_exceptions.ConnectionError("down")):
            with self.assertRaises(BackendUnavailable):
                await self.db.get_item("1")

    async def test_unreachable_server(self):
        client = MagicMock()
        client.ping.side_effect = redis_exceptions.ConnectionError("refused")
        db = RedisDbClient(client=client)

        self.assertFalse(await db.connect())
        self.assertFalse(await db.health_check())
        with self.assertRaises(BackendUnavailable):
            await db.sign_in_with_password(SEED_EMAIL, SEED_PASSWORD)

    def test_requires_url_or_client(self):
        with self.assertRaises(ValueError):
            RedisDbClient()


if __name__ == "__main__":
    unittest.main()
