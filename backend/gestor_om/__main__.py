from __future__ import annotations

import uvicorn

from .config import settings
from .logging_config import setup_logging


def main() -> None:
    setup_logging()
    uvicorn.run("gestor_om.main:app", host=settings.host, port=settings.port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
