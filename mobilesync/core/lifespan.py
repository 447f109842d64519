import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mobilesync.config import get_settings
from mobilesync.core.firebase import initialize_firebase
from mobilesync.core.logging import initialize_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and Firebase before the first request."""
  settings = get_settings()

  initialize_logging(settings)
  logger.info("Startup complete - environment=%s", settings.environment)

  # Requests that need Firebase fail with failed-precondition instead.
  if not initialize_firebase(settings):
    logger.warning("Starting without Firebase; push, claims and ledger routes are unavailable.")

  yield
