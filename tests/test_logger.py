import io
import json
import sys
import unittest
from unittest.mock import MagicMock, patch

from loguru import logger

from src.config.settings import settings
from src.core.logger import REDACTED, SeqSink, _sanitize_value, configure_logging, log_patcher
from src.core.results import ResultStatus, ServiceResult, guarded


class DummyConnection:
    """A minimal dummy class that relies on default object.__repr__ (containing 'at 0x...')."""

    pass


async def dummy_coroutine() -> None:
    pass


class TestLoggerSanitization(unittest.TestCase):
    """Test suite for Loguru payload sanitization and credential redaction."""

    def test_sanitize_value_primitives_and_collections(self) -> None:
        """Verifies ordinary identifiers pass through unmodified."""
        raw_data = {"user_id": "alice", "tenants": ["acme", "globex"], "nested": {"approved": True}}
        sanitized = _sanitize_value(raw_data)

        self.assertEqual(sanitized, raw_data)
        self.assertIsInstance(sanitized["tenants"], list)

    def test_sanitize_value_redacts_credentials(self) -> None:
        """Verifies tokens, secrets and authorization headers never reach a sink."""
        raw_data = {
            "invitation_token": "abc",
            "Authorization": "Bearer xyz",
            "nested": {"IDENTITY_TOKEN_SECRET": "s3cr3t", "tenant_id": "acme"},
            "email_api_key": "k",
        }
        sanitized = _sanitize_value(raw_data)

        self.assertEqual(sanitized["invitation_token"], REDACTED)
        self.assertEqual(sanitized["Authorization"], REDACTED)
        self.assertEqual(sanitized["nested"]["IDENTITY_TOKEN_SECRET"], REDACTED)
        self.assertEqual(sanitized["nested"]["tenant_id"], "acme")
        self.assertEqual(sanitized["email_api_key"], REDACTED)

    def test_sanitize_value_memory_addresses(self) -> None:
        """Verifies default __repr__ memory addresses are replaced with module-qualified names."""
        dummy = DummyConnection()
        self.assertIn(" at 0x", repr(dummy))

        sanitized = _sanitize_value(dummy)

        self.assertEqual(sanitized, f"[{dummy.__class__.__module__}.DummyConnection]")

    def test_sanitize_value_callables_and_coroutines(self) -> None:
        """Verifies functions and coroutine functions are stringified."""
        self.assertEqual(_sanitize_value(log_patcher), f"{log_patcher.__module__}.log_patcher()")
        self.assertEqual(_sanitize_value(dummy_coroutine), f"{dummy_coroutine.__module__}.dummy_coroutine()")

    def test_log_patcher_mutates_record(self) -> None:
        """Verifies the global patcher cleans both bound extras and positional args."""
        dummy = DummyConnection()
        record = {"extra": {"db": dummy, "token": "raw-token"}, "args": (dummy, "string_arg")}

        log_patcher(record)

        expected_str = f"[{dummy.__class__.__module__}.DummyConnection]"
        self.assertEqual(record["extra"]["db"], expected_str)
        self.assertEqual(record["extra"]["token"], REDACTED)
        self.assertEqual(record["args"][0], expected_str)
        self.assertEqual(record["args"][1], "string_arg")


class TestSeqSink(unittest.TestCase):
    """Test suite for the synchronous HTTP sink routing JSON logs to Seq."""

    def setUp(self) -> None:
        self.sink = SeqSink("http://fake-seq:5341/", api_key="seq-key")

        self.mock_loguru_json = json.dumps(
            {
                "record": {
                    "time": {"repr": "2026-02-27 15:00:00"},
                    "level": {"name": "WARNING"},
                    "message": "alice denied 'assign roles' in tenant acme",
                    "extra": {"request_id": "req-1", "tenant_id": "acme"},
                    "function": "assign_roles",
                    "module": "roles",
                    "line": 42,
                    "process": {"name": "MainProcess"},
                    "exception": None,
                }
            }
        )

    @patch("src.core.logger.httpx.Client.post")
    def test_seq_sink_write_success(self, mock_post: MagicMock) -> None:
        """Verifies the Loguru record is mapped into the Seq raw events format."""
        mock_response = MagicMock()
        mock_response.status_code = 201
        mock_post.return_value = mock_response

        self.sink.write(self.mock_loguru_json)

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args

        self.assertEqual(args[0], "http://fake-seq:5341/api/events/raw")
        self.assertEqual(kwargs["headers"]["X-Seq-ApiKey"], "seq-key")

        payload = kwargs["json"]["Events"][0]
        self.assertEqual(payload["Level"], "WARNING")
        self.assertEqual(payload["Properties"]["tenant_id"], "acme")
        self.assertEqual(payload["Properties"]["Process"], "MainProcess")
        self.assertIn("Application", payload["Properties"])
        self.assertNotIn("Exception", payload)

    @patch("src.core.logger.sys.stderr.write")
    @patch("src.core.logger.httpx.Client.post")
    def test_seq_sink_http_error_fallback(self, mock_post: MagicMock, mock_stderr_write: MagicMock) -> None:
        """Verifies that an upstream Seq rejection is reported on stderr instead of raising."""
        mock_response = MagicMock()
        mock_response.status_code = 401
        mock_response.text = "Unauthorized"
        mock_post.return_value = mock_response

        self.sink.write(self.mock_loguru_json)

        mock_stderr_write.assert_called_once()
        self.assertIn("Seq API Error 401", mock_stderr_write.call_args[0][0])


class TestConsoleSink(unittest.IsolatedAsyncioTestCase):
    """Test suite for the console sink installed by configure_logging."""

    async def asyncTearDown(self) -> None:
        logger.remove()
        logger.disable("src")

    async def test_failure_traceback_omits_local_values(self) -> None:
        """Verifies a failed operation logs its traceback without rendering argument values."""

        @guarded("redeem invitation")
        async def redeem(token: str) -> ServiceResult[bool]:
            raise RuntimeError("store unavailable")

        invitation_token = "SECRET-INVITE-TOKEN-XYZ"
        buffer = io.StringIO()
        with (
            patch.object(sys, "stderr", buffer),
            patch.object(settings, "SEQ_URL", None),
            patch("src.core.logger.logging.basicConfig"),
        ):
            configure_logging()
            logger.enable("src")
            result = await redeem(invitation_token)

        output = buffer.getvalue()
        self.assertEqual(result.status, ResultStatus.INTERNAL_SERVER_ERROR)
        self.assertIn("Operation 'redeem invitation' failed", output)
        self.assertIn("RuntimeError: store unavailable", output)
        self.assertNotIn(invitation_token, output)


if __name__ == "__main__":
    unittest.main()
