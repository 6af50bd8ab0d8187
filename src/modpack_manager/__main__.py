"""Entry point for the standalone server process."""

import uvicorn

from modpack_manager.config import settings
from modpack_manager.main import app


def main() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
