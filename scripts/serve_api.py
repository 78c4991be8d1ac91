from __future__ import annotations

import uvicorn

from vanplane.apps.api.main import create_app
from vanplane.core.config import get_settings


def main() -> None:
    # Serve the management API and the site sync route from one process.
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
