import time
import unittest

from src.core.tokens import IdentityTokenParser, InvalidIdentityTokenError, claims_from_mapping
from tests.base import make_token

SECRET = "unit-test-secret"


class TestIdentityTokenParser(unittest.TestCase):
    """Test suite for bearer token decoding and claim resolution."""

    def setUp(self) -> None:
        self.parser = IdentityTokenParser(SECRET, ["HS256"])

    def test_parse_valid_token(self) -> None:
        """Verifies subject, email and name are resolved from a signed token."""
        token = make_token({"sub": "alice", "email": "alice@example.com", "name": "Alice"}, SECRET)

        claims = self.parser.parse(token)

        self.assertEqual(claims.user_id, "alice")
        self.assertEqual(claims.email, "alice@example.com")
        self.assertEqual(claims.name, "Alice")

    def test_wrong_signature_rejected(self) -> None:
        """Verifies tokens signed with another key are refused."""
        token = make_token({"sub": "alice"}, "someone-elses-secret")

        with self.assertRaises(InvalidIdentityTokenError):
            self.parser.parse(token)

    def test_expired_token_rejected(self) -> None:
        """Verifies time claims are validated."""
        token = make_token({"sub": "alice", "exp": int(time.time()) - 60}, SECRET)

        with self.assertRaises(InvalidIdentityTokenError):
            self.parser.parse(token)

    def test_garbage_and_empty_tokens_rejected(self) -> None:
        """Verifies malformed input raises the parser's own error type."""
        for token in ("", "   ", "not-a-jwt", "a.b.c"):
            with self.subTest(token=token), self.assertRaises(InvalidIdentityTokenError):
                self.parser.parse(token)

    def test_error_message_does_not_echo_token(self) -> None:
        """Verifies the raised message never contains the token itself."""
        token = make_token({"sub": "alice"}, "someone-elses-secret")

        with self.assertRaises(InvalidIdentityTokenError) as ctx:
            self.parser.parse(token)

        self.assertNotIn(token, str(ctx.exception))


class TestClaimsFromMapping(unittest.TestCase):
    """Test suite for the claim fallback order."""

    def test_subject_fallback_order(self) -> None:
        """Verifies preferred_username is used when sub is absent and email is the last resort."""
        self.assertEqual(claims_from_mapping({"preferred_username": "bob", "email": "b@x.io"}).user_id, "bob")
        self.assertEqual(claims_from_mapping({"email": "b@x.io"}).user_id, "b@x.io")

    def test_upn_used_as_email(self) -> None:
        """Verifies the upn claim fills in a missing email."""
        claims = claims_from_mapping({"sub": "carol", "upn": "carol@corp.example"})

        self.assertEqual(claims.email, "carol@corp.example")
        self.assertIsNone(claims.name)

    def test_blank_claims_ignored(self) -> None:
        """Verifies empty claim values do not count as present."""
        with self.assertRaises(InvalidIdentityTokenError):
            claims_from_mapping({"sub": "  ", "email": ""})


if __name__ == "__main__":
    unittest.main()
