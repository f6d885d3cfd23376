from __future__ import annotations

import uvicorn

from planwizard.config import ensure_directories, get_server_config
from planwizard.logging.logger import get_logger


def main() -> None:
    ensure_directories()
    logger = get_logger()
    server = get_server_config()
    logger.info("Starting Plan Wizard on %s:%s", server.host, server.port)
    uvicorn.run("apps.local.main:app", host=server.host, port=server.port, reload=False)


if __name__ == "__main__":
    main()
