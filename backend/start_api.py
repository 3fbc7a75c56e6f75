#!/usr/bin/env python3
"""
Storefront Visitor API Startup Script

Starts the storefront FastAPI server (visitor sessions + referral handshake)
for local development.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the storefront API server."""
    print("Starting Storefront Visitor API...")
    print("   Visitor sessions:   GET /, POST /v1/visitor/pulse")
    print("   Referral handshake: GET /v1/handshake?ref=<id>")
    print("")
    print("Documentation will be available at:")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   ReDoc:       http://localhost:8000/redoc")
    print("")

    # Check for environment file
    if not Path(".env").exists():
        print("WARNING: No .env file found!")
        print("   Create a .env file with these variables:")
        print("   BACKEND_URL=https://<project>.supabase.co")
        print("   BACKEND_API_KEY=<public anon key>")
        print("")

    try:
        uvicorn.run(
            "storefront.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["storefront"],
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\nShutting down storefront API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
