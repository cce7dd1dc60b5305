"""
Run the notify service with uvicorn.

    python -m qr_notify
"""

import uvicorn

from qr_notify.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "qr_notify.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        # Lets request.url.scheme reflect X-Forwarded-Proto behind a TLS proxy.
        proxy_headers=True,
        forwarded_allow_ips=settings.forwarded_allow_ips,
    )


if __name__ == "__main__":
    main()
