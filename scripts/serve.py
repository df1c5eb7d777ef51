#!/usr/bin/env python3
"""Serve the ResQ API with uvicorn."""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from src.config import get_settings


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the ResQ API server")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    args = parser.parse_args()

    print(f"Serving ResQ API on http://{args.host}:{args.port}")
    uvicorn.run(
        "src.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
