import unittest
from datetime import datetime, timedelta, timezone

from jose import jwt

from qrono.auth import AuthService, hash_password, verify_password_hash
from qrono.db import InMemoryDbClient
from qrono.errors import Conflict, InvalidCredentials, InvalidInput, Unauthorized


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class AuthServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.clock = FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))
        self.auth = AuthService(self.db, secret="test-secret", clock=self.clock)
        self.user = self.auth.register("alice", "pw1")

    def test_password_is_stored_as_digest(self):
        stored = self.db.get_user(self.user.id)
        self.assertNotEqual(stored.password_hash, "pw1")
        self.assertTrue(verify_password_hash("pw1", stored.password_hash))
        self.assertFalse(verify_password_hash("pw2", stored.password_hash))
        self.assertNotEqual(hash_password("pw1"), stored.password_hash)

    def test_register_requires_both_fields(self):
        with self.assertRaises(InvalidInput):
            self.auth.register("", "pw")
        with self.assertRaises(InvalidInput):
            self.auth.register("bob", "")

    def test_register_duplicate_username(self):
        with self.assertRaises(Conflict):
            self.auth.register("alice", "other")

    def test_login_rejects_bad_credentials_alike(self):
        with self.assertRaises(InvalidCredentials) as wrong_password:
            self.auth.login("alice", "nope")
        with self.assertRaises(InvalidCredentials) as unknown_user:
            self.auth.login("nobody", "pw1")
        self.assertEqual(wrong_password.exception.message, unknown_user.exception.message)

    def test_token_valid_until_expiry(self):
        token = self.auth.login("alice", "pw1")
        self.assertEqual(self.auth.authenticate(token), self.user.id)

        start = self.clock.now
        self.clock.now = start + timedelta(hours=5) - timedelta(seconds=1)
        self.assertEqual(self.auth.authenticate(token), self.user.id)

        self.clock.now = start + timedelta(hours=5)
        with self.assertRaises(Unauthorized) as ctx:
            self.auth.authenticate(token)
        self.assertEqual(ctx.exception.code, "invalid_token")

    def test_token_carries_only_user_id_and_expiry(self):
        token = self.auth.issue_token(self.user.id)
        claims = jwt.get_unverified_claims(token)
        self.assertEqual(set(claims), {"sub", "exp"})
        self.assertEqual(claims["sub"], str(self.user.id))

    def test_missing_token(self):
        for token in (None, ""):
            with self.assertRaises(Unauthorized) as ctx:
                self.auth.authenticate(token)
            self.assertEqual(ctx.exception.code, "no_token")

    def test_garbage_and_foreign_tokens(self):
        forged = AuthService(self.db, secret="other-secret", clock=self.clock).issue_token(
            self.user.id
        )
        no_subject = jwt.encode({"exp": 9999999999}, "test-secret", algorithm="HS256")
        for token in ("not-a-token", forged, no_subject):
            with self.assertRaises(Unauthorized) as ctx:
                self.auth.authenticate(token)
            self.assertEqual(ctx.exception.code, "invalid_token")

    def test_token_for_deleted_user_is_invalid(self):
        token = self.auth.issue_token(999)
        user_id = self.auth.authenticate(token)
        with self.assertRaises(Unauthorized):
            self.auth.current_user(user_id)

    def test_verify_password(self):
        self.auth.verify_password(self.user.id, "pw1")
        with self.assertRaises(InvalidCredentials) as ctx:
            self.auth.verify_password(self.user.id, "pw2")
        self.assertEqual(ctx.exception.message, "The password you entered is incorrect.")
        with self.assertRaises(InvalidInput):
            self.auth.verify_password(self.user.id, "")


if __name__ == "__main__":
    unittest.main()
