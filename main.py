"""CLI entry point: python main.py --port 8000"""

import argparse

import uvicorn

from backoffice.api import create_app


def main():
    parser = argparse.ArgumentParser(
        description="Back-office engine API server"
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--log-level", default="info",
        help="Uvicorn log level (default: info)"
    )
    args = parser.parse_args()

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
