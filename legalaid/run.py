#!/usr/bin/env python3
"""
Development runner for the Legal Aid API
========================================

Usage:
    python -m legalaid.run
    HOST=127.0.0.1 PORT=9000 RELOAD=false python -m legalaid.run
"""

import os

import uvicorn

from .config import get_settings

if __name__ == "__main__":
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    print("Starting Legal Aid API...")
    print(f"API docs: http://localhost:{port}/docs")
    print(f"Health:   http://localhost:{port}/api/health")
    print()

    uvicorn.run(
        "legalaid.api:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "true").lower() == "true",
        log_level=get_settings().log_level.lower(),
    )
