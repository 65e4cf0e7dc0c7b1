"""Run the ClassifyKit API server.

Usage:
    python -m classifykit
"""

from __future__ import annotations

import uvicorn

from classifykit.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "classifykit.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
