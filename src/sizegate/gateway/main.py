"""Command-line entrypoint for running the size gate."""

from __future__ import annotations

import uvicorn

from ..common.settings import load_settings
from .app import create_app


def main() -> None:
    settings = load_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.listen_host, port=settings.listen_port, log_config=None)


if __name__ == "__main__":
    main()
