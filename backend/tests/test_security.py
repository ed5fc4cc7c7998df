import unittest
from types import SimpleNamespace
from unittest import mock

from fastapi import HTTPException

from nollyai.core import security
from nollyai.core.security import _decide_role, require_worker, user_from_claims
from nollyai.core.settings import settings
from nollyai.services.cache import TTLCache


def _request(token: str | None):
    headers = {"authorization": f"Bearer {token}"} if token is not None else {}
    return SimpleNamespace(headers=headers)


class TestRoleResolution(unittest.TestCase):
    def test_admin_emails(self):
        role, reason = _decide_role(email_is_admin=True, claim_is_admin=False)
        self.assertEqual(role, "admin")
        self.assertEqual(reason, "admin_emails")

    def test_admin_emails_win_over_claim(self):
        role, reason = _decide_role(email_is_admin=True, claim_is_admin=True)
        self.assertEqual(reason, "admin_emails")

    def test_jwt_claim(self):
        role, reason = _decide_role(email_is_admin=False, claim_is_admin=True)
        self.assertEqual(role, "admin")
        self.assertEqual(reason, "jwt_claim")

    def test_default_user(self):
        role, reason = _decide_role(email_is_admin=False, claim_is_admin=False)
        self.assertEqual(role, "user")
        self.assertEqual(reason, "default")


class TestUserFromClaims(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch.object(settings, "admin_emails", {"ops@nollyai.ng"})
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_plain_user(self):
        user = user_from_claims({"sub": "u1", "email": "ada@example.com"})
        self.assertEqual(user.id, "u1")
        self.assertFalse(user.is_admin)

    def test_admin_email_is_case_insensitive(self):
        user = user_from_claims({"sub": "u2", "email": "  OPS@NollyAI.ng "})
        self.assertTrue(user.is_admin)

    def test_app_metadata_role(self):
        user = user_from_claims({"sub": "u3", "email": "x@example.com", "app_metadata": {"role": "Admin"}})
        self.assertTrue(user.is_admin)

    def test_malformed_app_metadata_is_ignored(self):
        user = user_from_claims({"sub": "u4", "app_metadata": "admin"})
        self.assertEqual(user.role, "user")

    def test_missing_subject(self):
        with self.assertRaises(HTTPException) as ctx:
            user_from_claims({"email": "x@example.com"})
        self.assertEqual(ctx.exception.status_code, 401)


class TestRequireWorker(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch.object(settings, "job_worker_token", "cron-secret")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_worker_token(self):
        self.assertEqual(require_worker(_request("cron-secret")), "worker")

    def test_missing_header(self):
        with self.assertRaises(HTTPException) as ctx:
            require_worker(_request(None))
        self.assertEqual(ctx.exception.status_code, 401)

    def test_admin_user_token(self):
        claims = {"sub": "admin-1", "role": "admin"}
        with mock.patch.object(security, "_decode_supabase_jwt", return_value=claims):
            self.assertEqual(require_worker(_request("user-jwt")), "admin-1")

    def test_non_admin_user_token(self):
        with mock.patch.object(security, "_decode_supabase_jwt", return_value={"sub": "u1"}):
            with self.assertRaises(HTTPException) as ctx:
                require_worker(_request("user-jwt"))
        self.assertEqual(ctx.exception.status_code, 403)

    def test_unset_worker_token_never_matches(self):
        with mock.patch.object(settings, "job_worker_token", None), mock.patch.object(
            security, "_decode_supabase_jwt", return_value={"sub": "u1"}
        ):
            with self.assertRaises(HTTPException):
                require_worker(_request(""))


class TestTTLCache(unittest.TestCase):
    def test_entries_expire(self):
        now = [100.0]
        cache = TTLCache(max_items=4, ttl_s=10, clock=lambda: now[0])
        cache.set("k", "v")
        self.assertEqual(cache.get("k"), "v")
        now[0] = 110.0
        self.assertIsNone(cache.get("k"))
        self.assertEqual(len(cache), 0)

    def test_oldest_entry_is_evicted(self):
        cache = TTLCache(max_items=2, ttl_s=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        self.assertIsNone(cache.get("a"))
        self.assertEqual(cache.get("c"), 3)

    def test_get_or_set_calls_factory_once(self):
        cache = TTLCache()
        calls = []
        factory = lambda: calls.append(1) or "client"  # noqa: E731
        self.assertEqual(cache.get_or_set("jwks", factory), "client")
        self.assertEqual(cache.get_or_set("jwks", factory), "client")
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()
