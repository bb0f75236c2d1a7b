#!/usr/bin/env python3
"""
Savings Ledger Entry Point

Starts the FastAPI server with settings from SAVINGS_* environment variables.
"""

import sys

from savings_ledger.api import run_server
from savings_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting Savings Ledger...")
    print(f"💾 Storage: {config.database_url}")
    print(f"🔒 Per-account lock timeout: {config.lock_timeout_seconds:g}s")
    print(f"🌐 API available at: http://localhost:{config.api_port}{config.api_prefix}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}{config.api_prefix}/docs")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Savings Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
