"""Run the gateway with uvicorn on GATEWAY_HOST / GATEWAY_PORT."""

from __future__ import annotations

import uvicorn

from adsidebar.config.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "adsidebar.gateway.app:app",
        host=settings.gateway.host,
        port=settings.gateway.port,
    )


if __name__ == "__main__":
    main()
