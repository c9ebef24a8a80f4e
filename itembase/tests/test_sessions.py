import unittest
from datetime import datetime, timezone

from itembase.db import LocalDbClient
from itembase.errors import Unauthorized
from itembase.models import SEED_USER_ID, BackendKind
from itembase.sessions import SessionManager, TokenCodec, parse_bearer, session_expiry


class TokenCodecTests(unittest.TestCase):
    def test_encode_and_decode(self):
        token = TokenCodec.encode(BackendKind.KV, "u1")
        self.assertEqual(token, "kv_u1")
        self.assertEqual(TokenCodec.decode(token), (BackendKind.KV, "u1"))

    def test_unrecognized_tokens(self):
        for token in (None, "", "u1", "mongo_u1", "local_"):
            self.assertIsNone(TokenCodec.decode(token))

    def test_ident_for_checks_backend(self):
        self.assertEqual(TokenCodec.ident_for(BackendKind.LOCAL, "local_abc"), "abc")
        self.assertIsNone(TokenCodec.ident_for(BackendKind.RELATIONAL, "local_abc"))

    def test_opaque_ids_are_unique(self):
        self.assertNotEqual(TokenCodec.new_opaque_id(), TokenCodec.new_opaque_id())


class HelperTests(unittest.TestCase):
    def test_parse_bearer(self):
        self.assertEqual(parse_bearer("Bearer abc"), "abc")
        self.assertIsNone(parse_bearer("Bearer "))
        self.assertIsNone(parse_bearer("bearer abc"))
        self.assertIsNone(parse_bearer(None))

    def test_session_expiry(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.assertEqual(session_expiry(now, 60), datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc))


class SessionManagerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = LocalDbClient(simulate_latency=False)
        self.sessions = SessionManager(lambda: self.db)

    async def test_current_ignores_foreign_tokens(self):
        self.assertIsNone(await self.sessions.current(f"kv_{SEED_USER_ID}"))
        session = await self.sessions.current(f"local_{SEED_USER_ID}")
        self.assertEqual(session.user.id, SEED_USER_ID)

    async def test_no_token_means_no_session(self):
        # The backend alone would answer with the first user.
        self.assertIsNotNone(await self.db.get_session(None))
        self.assertIsNone(await self.sessions.current(None))
        self.assertIsNone(await self.sessions.current(""))

    async def test_require_rejects_missing_token(self):
        with self.assertRaises(Unauthorized):
            await self.sessions.require(None)
        with self.assertRaises(Unauthorized):
            await self.sessions.require("local_nobody")

    async def test_end_with_foreign_token_is_a_no_op(self):
        await self.sessions.end("relational_abc")
        await self.sessions.end(None)


if __name__ == "__main__":
    unittest.main()
