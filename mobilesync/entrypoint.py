import logging
import os

import uvicorn

logger = logging.getLogger(__name__)


def main() -> None:
  """Serve the HTTP surface locally; serverless deployments use the Mangum handler instead."""
  host = os.getenv("MOBILESYNC_HOST", "127.0.0.1")
  port = int(os.getenv("MOBILESYNC_PORT", "8002"))
  logger.info("Starting application on %s:%s", host, port)
  uvicorn.run("mobilesync.main:app", host=host, port=port)


if __name__ == "__main__":
  main()
