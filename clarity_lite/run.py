#!/usr/bin/env python3
"""
Quick runner for Clarity Service
================================

Usage:
    python -m clarity_lite.run
    # or, with the dev auth bypass
    DEPLOYMENT_MODE=local python -m clarity_lite.run
"""

import os

import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8000"))
    print("Starting Clarity Service...")
    print(f"API docs: http://localhost:{port}/docs")
    print(f"Health:   http://localhost:{port}/health")
    print()

    uvicorn.run(
        "clarity_lite.api:app",
        host="0.0.0.0",
        port=port,
        reload=os.environ.get("RELOAD", "true").lower() == "true",
    )
