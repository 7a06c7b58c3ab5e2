#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Creates the update-log table on first run, then serves app.main:app with reload.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    from app.init_db import init_db

    init_db()
    print("Starting update delivery server at http://localhost:8000 (docs at /docs)")
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
