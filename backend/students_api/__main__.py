"""Run the API with uvicorn: ``python -m students_api``."""

import uvicorn

from students_api.config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        "students_api.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
