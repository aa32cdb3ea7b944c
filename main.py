"""Command line entry point: serve the Ticketeer API with uvicorn."""

from ticketeer.config import get_settings
from ticketeer.main import app


def main():
    import uvicorn

    settings = get_settings()
    # Logging is configured by create_app, so uvicorn must not replace it.
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
