#!/usr/bin/env python3
"""
Savings Group Entry Point

Starts the FastAPI server with host, port and logging taken from
SAVINGS_GROUP_* environment settings.
"""

import sys

from savings_group.config import get_config
from savings_group.logging_config import setup_logging
from savings_group.api import run_server


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    logger.info(f"Starting savings group API on http://{config.api_host}:{config.api_port}")
    logger.info(f"Documentation at http://{config.api_host}:{config.api_port}/docs")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down savings group API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
