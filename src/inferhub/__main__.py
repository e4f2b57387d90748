"""Command-line entry point: ``python -m inferhub``."""

import argparse

from inferhub.config import get_settings
from inferhub.utils.logger import setup_logging


def main(argv: list[str] | None = None) -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="inferhub", description="Serve the inferhub plugin runtime API"
    )
    parser.add_argument("--host", default=settings.web_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.web_port, help="Bind port")
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    import uvicorn

    from inferhub.server import create_app

    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
