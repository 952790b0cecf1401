"""CLI entry-point for running the signaling relay."""
from __future__ import annotations

import uvicorn

from peerlink.core.config import get_relay_config


def main() -> None:
    """Run the ASGI application using uvicorn."""
    config = get_relay_config()
    uvicorn.run(
        "peerlink.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        timeout_graceful_shutdown=2,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":
    main()
