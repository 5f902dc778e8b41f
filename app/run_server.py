#!/usr/bin/env python3
"""
calcpad API Server Entry Point

Run with:
    python run_server.py

Or for development with auto-reload:
    uvicorn calcpad.server:create_app --factory --reload --host 127.0.0.1 --port 8765
"""

import sys
import os

# Make the calcpad package importable without installing it
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from calcpad.config import load_config
from calcpad.server import main


if __name__ == "__main__":
    config = load_config()
    print("=" * 50)
    print("  calcpad API Server")
    print("=" * 50)
    print()
    print(f"Starting server on http://{config.host}:{config.port}")
    print(f"WebSocket endpoint: ws://{config.host}:{config.port}/ws")
    print()
    print("Press Ctrl+C to stop")
    print()
    main()
