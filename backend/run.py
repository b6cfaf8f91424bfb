#!/usr/bin/env python3
# backend/run.py
"""
Development server runner for the TutorLink API.
For local development only - binds to localhost with auto-reload.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

import uvicorn

from tutorlink.core.config import settings

if __name__ == "__main__":
    print("Starting TutorLink development server")
    print(f"Database: {settings.database_url}")
    print("API Docs: http://localhost:8000/docs")

    uvicorn.run(
        "tutorlink.main:app",
        host="127.0.0.1",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level=settings.log_level.lower(),
    )
