#!/usr/bin/env python3
"""
Run the GT06 TCP Server without the API
Usage: python -m tcp_server.run_server [port]
"""
import sys
import asyncio

from tcp_server.gps_tcp_server import main


def run(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    port = int(argv[0]) if argv else None

    print(f"Starting GT06 TCP Server{f' on port {port}' if port else ''}, press Ctrl+C to stop")
    try:
        asyncio.run(main(port))
    except KeyboardInterrupt:
        print("\nServer stopped")


if __name__ == "__main__":
    run()
