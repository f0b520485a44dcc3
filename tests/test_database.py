import sqlite3
import unittest
from unittest.mock import MagicMock, patch

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.database import get_session, init_models, set_sqlite_pragma


class TestDatabaseCore(unittest.IsolatedAsyncioTestCase):
    """Test suite for database configuration, schema creation and connection pragmas."""

    async def test_get_session_yields_active_session(self) -> None:
        """Validates that the session dependency yields a functional AsyncSession."""
        session_gen = get_session()
        session = await anext(session_gen)

        result = await session.exec(text("SELECT 1"))
        self.assertEqual(result.first()[0], 1)

        try:
            await anext(session_gen)
        except StopAsyncIteration:
            pass

    async def test_init_models_creates_access_tables(self) -> None:
        """Validates that every table of the access model is registered and created."""
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        try:
            await init_models(engine)
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        finally:
            await engine.dispose()

        for table in ("user", "tenant_role", "invitation", "tenant", "agent"):
            self.assertIn(table, tables)

    async def test_tenant_role_is_unique_per_user_and_tenant(self) -> None:
        """Validates the unique (user, tenant) constraint exists on memberships."""
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        try:
            await init_models(engine)
            async with engine.connect() as conn:
                constraints = await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).get_unique_constraints("tenant_role")
                )
        finally:
            await engine.dispose()

        self.assertIn(["user_id", "tenant"], [c["column_names"] for c in constraints])

    @patch("src.core.database.logger.error")
    def test_set_sqlite_pragma_execution(self, mock_logger: MagicMock) -> None:
        """Validates that SQLite pragmas are executed on connection creation.

        Args:
            mock_logger: Mocked Loguru logger to verify error handling.
        """
        mock_dbapi_connection = MagicMock()
        mock_cursor = MagicMock()
        mock_dbapi_connection.cursor.return_value = mock_cursor

        set_sqlite_pragma(mock_dbapi_connection, MagicMock())

        mock_cursor.execute.assert_any_call("PRAGMA journal_mode=WAL")
        mock_cursor.execute.assert_any_call("PRAGMA synchronous=NORMAL")
        mock_cursor.execute.assert_any_call("PRAGMA busy_timeout=30000")
        mock_cursor.execute.assert_any_call("PRAGMA foreign_keys=ON")
        mock_cursor.close.assert_called_once()
        mock_logger.assert_not_called()

    @patch("src.core.database.logger.error")
    def test_set_sqlite_pragma_exception_handling(self, mock_logger: MagicMock) -> None:
        """Validates exception logging and raising during pragma configuration.

        Args:
            mock_logger: Mocked Loguru logger.
        """
        mock_dbapi_connection = MagicMock()
        mock_cursor = MagicMock()
        mock_dbapi_connection.cursor.return_value = mock_cursor
        mock_cursor.execute.side_effect = sqlite3.OperationalError("database is locked")

        with self.assertRaises(sqlite3.OperationalError):
            set_sqlite_pragma(mock_dbapi_connection, MagicMock())

        mock_logger.assert_called_once()
        mock_cursor.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
