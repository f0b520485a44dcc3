import json
import unittest
from datetime import datetime
from unittest.mock import MagicMock, patch

from src.core.results import GENERIC_FAILURE_MESSAGE, ResultStatus, ServiceResult, guarded, result_response


class LookupService:
    @guarded("lookup user", "user_id")
    async def explode(self, user_id: str, token: str) -> ServiceResult[bool]:
        raise RuntimeError(f"boom with {token}")

    @guarded("lookup user")
    async def succeed(self) -> ServiceResult[str]:
        return ServiceResult.success("ok")


class TestGuarded(unittest.IsolatedAsyncioTestCase):
    """Test suite for converting infrastructure failures into results."""

    @patch("src.core.results.logger")
    async def test_exception_becomes_internal_error(self, mock_logger: MagicMock) -> None:
        """Verifies the caller gets a generic failure and only whitelisted identifiers are logged."""
        result = await LookupService().explode("alice", token="secret-token")

        self.assertEqual(result.status, ResultStatus.INTERNAL_SERVER_ERROR)
        self.assertEqual(result.error, GENERIC_FAILURE_MESSAGE)

        bind_kwargs = mock_logger.bind.call_args.kwargs
        self.assertEqual(bind_kwargs["user_id"], "alice")
        self.assertEqual(bind_kwargs["operation"], "lookup user")
        self.assertNotIn("token", bind_kwargs)
        mock_logger.bind.return_value.exception.assert_called_once()

    async def test_success_passes_through(self) -> None:
        """Verifies results of healthy calls are returned untouched."""
        result = await LookupService().succeed()

        self.assertTrue(result.is_success)
        self.assertEqual(result.data, "ok")


class TestResultResponse(unittest.TestCase):
    """Test suite for the HTTP rendering of service results."""

    def test_success_payload(self) -> None:
        """Verifies data is JSON-encoded under the data key with a 200."""
        response = result_response(ServiceResult.success({"at": datetime(2026, 1, 1)}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(json.loads(response.body), {"data": {"at": "2026-01-01T00:00:00"}})

    def test_error_payload(self) -> None:
        """Verifies each failure tag maps to its HTTP status with the error message."""
        cases = [
            (ServiceResult.bad_request("bad"), 400),
            (ServiceResult.unauthorized(), 401),
            (ServiceResult.forbidden(), 403),
            (ServiceResult.not_found("missing"), 404),
            (ServiceResult.conflict("dup"), 409),
            (ServiceResult.internal_error(), 500),
        ]
        for result, code in cases:
            with self.subTest(code=code):
                response = result_response(result)
                self.assertEqual(response.status_code, code)
                self.assertEqual(json.loads(response.body), {"error": result.error})


if __name__ == "__main__":
    unittest.main()
