#!/usr/bin/env python3
"""
Setlist HTTP Server Runner
"""

from app.crosscutting.config import setup_config
from app.crosscutting.logging import setup_logging
from app.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    settings = setup_config()
    setup_logging(settings.log_level, settings.log_file)
    server = HTTPServer(settings=settings)
    server.run()


if __name__ == '__main__':
    main()
