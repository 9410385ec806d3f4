#!/usr/bin/env python3
"""Run the API server: python -m chosung"""
import os

import uvicorn


if __name__ == "__main__":
    uvicorn.run(
        "chosung.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
