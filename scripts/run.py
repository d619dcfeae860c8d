#!/usr/bin/env python3
"""Run the local time clock API with Uvicorn."""

import os
import sys

import uvicorn

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from core.settings import APP_HOST, APP_PORT, APP_RELOAD, LOG_LEVEL  # noqa: E402

if __name__ == "__main__":
    print(f"Starting time clock API on {APP_HOST}:{APP_PORT} (reload={APP_RELOAD})")

    uvicorn.run(
        "main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=APP_RELOAD,
        log_level=LOG_LEVEL.lower(),
        app_dir=PROJECT_ROOT,
        reload_dirs=[PROJECT_ROOT],
    )
