"""Application bootstrapper for the Mercado Libre dashboard."""
from __future__ import annotations

import logging

from .web.app import bootstrap_app

logger = logging.getLogger(__name__)


def run() -> None:
    """Entrypoint used by the CLI to launch the web UI."""

    logging.basicConfig(level=logging.INFO)
    app = bootstrap_app()
    config = app.config["dashboard_config"]
    logger.info("Starting dashboard in %s mode", config.environment)
    app.run(debug=config.environment == "development")


if __name__ == "__main__":  # pragma: no cover - manual execution only
    run()
