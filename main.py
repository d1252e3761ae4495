"""Application Entry Point."""

import asyncio
import logging
import sys

from config.settings import get_settings

LOG_FORMATS = {
    "text": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    "json": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
}


def configure_logging(cli: bool) -> None:
    settings = get_settings()
    logging.basicConfig(
        # Keep the REPL clean unless debugging
        level=logging.WARNING if cli and settings.log_level == "INFO" else settings.log_level,
        format=LOG_FORMATS[settings.log_format],
    )

    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


async def main():
    """Run the application."""
    cli = "--cli" in sys.argv
    configure_logging(cli)

    if cli:
        from ui.cli import CLI

        await CLI(launch_browser="--no-browser" not in sys.argv).start()
    else:
        # Run Web Server
        import uvicorn

        print("Starting Wayfarer API at http://localhost:8000")
        config = uvicorn.Config("src.server.api:app", host="127.0.0.1", port=8000)
        server = uvicorn.Server(config)
        await server.serve()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
