"""
Ride-hailing Fare & Assignment Backend
======================================
Entry point. Run with: python main.py  (or: uvicorn main:app --reload)

Host, port and auto-reload come from ``API_HOST`` / ``API_PORT`` /
``API_RELOAD`` (see ``ridecore.config.Settings``).
"""

import uvicorn

from ridecore.api.app import create_app
from ridecore.config import settings

app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
