"""Entry point for the booking API.

Usage:
    uvicorn api_server:app --port 8000
    python api_server.py
"""
import os

import uvicorn

from repair_booking.api.server import app

__all__ = ["app"]


if __name__ == "__main__":
    uvicorn.run(
        "api_server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
