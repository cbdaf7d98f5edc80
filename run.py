#!/usr/bin/env python3
"""
Run the Campus Bid Engine web server (development).
"""

import uvicorn

from utils.config import Config


def main():
    """Start the web server."""
    config = Config.load()

    print(f"Starting Campus Bid Engine on http://{config.host}:{config.port}")
    print("Press Ctrl+C to stop")

    uvicorn.run(
        "web.app:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
    )


if __name__ == "__main__":
    main()
