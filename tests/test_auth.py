import unittest

from campuschat.auth import SessionGate, extract_bearer, hash_password, verify_password
from campuschat.errors import InvalidToken, Unauthorized


class SessionGateTests(unittest.TestCase):
    def setUp(self):
        self.gate = SessionGate("s3cret")

    def test_issued_token_authenticates(self):
        self.assertEqual(self.gate.authenticate(self.gate.issue("+254700000001")), "+254700000001")

    def test_missing_credential_is_unauthorized(self):
        for credential in (None, ""):
            with self.subTest(credential=credential), self.assertRaises(Unauthorized):
                self.gate.authenticate(credential)

    def test_forged_and_malformed_tokens_are_invalid(self):
        token = self.gate.issue("alice")
        header, payload, sig = token.split(".")
        bad = [
            "not-a-token",
            "a.b",
            f"{header}.{payload}.{sig[:-2]}xx",
            SessionGate("other-secret").issue("alice"),
            f"{header}.{self.gate.issue('mallory').split('.')[1]}.{sig}",
            f"{header}.{payload}.{sig}é",
        ]
        for credential in bad:
            with self.subTest(credential=credential), self.assertRaises(InvalidToken):
                self.gate.authenticate(credential)

    def test_expired_token_is_invalid(self):
        clock = [1_000_000.0]
        gate = SessionGate("s3cret", ttl_seconds=60, now=lambda: clock[0])
        token = gate.issue("alice")
        clock[0] += 59
        self.assertEqual(gate.authenticate(token), "alice")
        clock[0] += 2
        with self.assertRaises(InvalidToken):
            gate.authenticate(token)


class CredentialTests(unittest.TestCase):
    def test_password_hashing(self):
        stored = hash_password("hunter2")
        self.assertTrue(stored.startswith("pbkdf2_sha256$"))
        self.assertTrue(verify_password("hunter2", stored))
        self.assertFalse(verify_password("hunter3", stored))
        self.assertFalse(verify_password("hunter2", "garbage"))
        self.assertNotEqual(hash_password("hunter2"), stored)

    def test_extract_bearer(self):
        self.assertEqual(extract_bearer("Bearer abc"), "abc")
        self.assertEqual(extract_bearer("bearer  abc "), "abc")
        self.assertIsNone(extract_bearer("Basic abc"))
        self.assertIsNone(extract_bearer("abc"))
        self.assertIsNone(extract_bearer(None))


if __name__ == "__main__":
    unittest.main()
