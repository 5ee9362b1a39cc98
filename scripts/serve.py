from __future__ import annotations

import uvicorn

from dealerhub.apps.api.main import create_app
from dealerhub.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
