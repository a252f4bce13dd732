#!/usr/bin/env python3
# backend/run.py
"""
Development server runner for the practice billing API.

Loads backend/.env through the settings module and serves app.main:app
with auto-reload.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn  # noqa: E402

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting practice billing API on http://localhost:{port}")
    print(f"API docs: http://localhost:{port}/docs")

    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
