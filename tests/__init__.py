import logging
import os

from loguru import logger

# Configure the settings before any application module is imported. The
# database lives in memory, the email queue and Redis are never contacted,
# and tokens are signed with a throwaway secret.
os.environ["SQLITE_DB_PATH"] = ":memory:"
os.environ["IDENTITY_TOKEN_SECRET"] = "test-identity-secret"
os.environ["ROLE_CACHE_BACKEND"] = "memory"
os.environ["EMAIL_QUEUE_ENABLED"] = "false"
os.environ.pop("EMAIL_API_URL", None)

# Mute application logs so unhappy-path tests (denials, conflicts) stay quiet
logger.disable("src")

logging.getLogger("asyncio").setLevel(logging.ERROR)
