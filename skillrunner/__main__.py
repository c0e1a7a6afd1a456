"""Run the skill runner with uvicorn: ``python -m skillrunner``."""

import uvicorn

from skillrunner.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("skillrunner.main:app", host="0.0.0.0", port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
