"""Uvicorn entry point for the Record Store API.

Run directly:        python -m blockserved.main
Run via uvicorn:     uvicorn blockserved.main:app --reload
"""

import uvicorn

from blockserved.api.app import create_app
from blockserved.core.config import Settings

app = create_app()


def main() -> None:
    """Start the API server with uvicorn."""
    settings = Settings()
    uvicorn.run(
        "blockserved.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
