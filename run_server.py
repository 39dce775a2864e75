#!/usr/bin/env python
"""
Server Entry Point

Starts the Seller Analytics API.
Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py --workers 4
"""

import argparse

import uvicorn

from seller_analytics.config import get_settings


def run_dev_server(port: int) -> None:
    """Run development server with auto-reload."""
    uvicorn.run(
        "seller_analytics.main:app",
        host="127.0.0.1",
        port=port,
        reload=True,
        reload_dirs=["seller_analytics"],
        log_level="debug",
        access_log=True,
    )


def run_prod_server(port: int, workers: int) -> None:
    """Run production server with Uvicorn workers."""
    settings = get_settings()
    uvicorn.run(
        "seller_analytics.main:app",
        host=settings.api_host,
        port=port,
        workers=workers,
        log_level=settings.monitoring.log_level.lower(),
        access_log=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


if __name__ == "__main__":
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Seller Analytics API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Port to run on")
    parser.add_argument("--workers", type=int, default=settings.api_workers, help="Worker processes")
    args = parser.parse_args()

    if args.dev:
        print("🚀 Starting development server...")
        run_dev_server(args.port)
    else:
        print("🚀 Starting production server...")
        run_prod_server(args.port, args.workers)
