"""FastAPI web application for the storefront app builder.

Routes are thin proxies to the build orchestrator and the tenant
configuration service in storeapp_builder/.
"""

from web.app import app, create_app

__all__ = ["app", "create_app"]
