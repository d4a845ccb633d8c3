"""civicboard entrypoint.

Run with:
  python -m civicboard
"""

import os
import uvicorn

from civicboard.logs import configure_logging


def main() -> None:
    configure_logging(os.getenv("CIVIC_LOG_LEVEL", "INFO"))
    host = os.getenv("CIVIC_HOST", "0.0.0.0")
    port = int(os.getenv("CIVIC_PORT", "8000"))
    reload = os.getenv("CIVIC_RELOAD", "false").lower() in {"1", "true", "yes", "y"}
    uvicorn.run("civicboard.app:app", host=host, port=port, reload=reload, log_config=None)

if __name__ == "__main__":
    main()
