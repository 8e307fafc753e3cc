#!/usr/bin/env python3
"""
Main entry point for the PriceWatch API.

Usage:
    python main.py

Requirements:
    1. pip install -e .
    2. Set environment variables (see .env.example)
"""

import logging
import sys

logger = logging.getLogger("pricewatch")


def main():
    """Main entry point for the application."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        from pricewatch.config import settings
        settings.validate_required_vars()
    except ValueError as e:
        logger.error(f"{e}")
        logger.error("Please check the .env.example file for required environment variables.")
        sys.exit(1)

    try:
        import uvicorn

        logger.info(f"Starting PriceWatch API on http://localhost:{settings.PORT}")
        logger.info(f"API documentation at: http://localhost:{settings.PORT}/docs")

        uvicorn.run(
            "pricewatch.main:app",
            host=settings.HOST,
            port=settings.PORT,
            reload=settings.RELOAD,
            log_level="info"
        )
    except ImportError as e:
        logger.error(f"Missing dependencies. Please run: pip install -e . ({e})")
        sys.exit(1)


if __name__ == "__main__":
    main()
