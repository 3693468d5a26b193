"""Entrypoint: python -m liftr_chat"""
from __future__ import annotations

import uvicorn

from liftr_chat.api.middleware.correlation_id import configure_logging


def main() -> None:
    configure_logging()
    uvicorn.run(
        "liftr_chat.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level="info",
        log_config=None,
    )


if __name__ == "__main__":
    main()
