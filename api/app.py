"""FastAPI application factory."""

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.invoices import create_billing_router
from api.middleware import RequestIDMiddleware, TenantContextMiddleware


def create_app(services: dict) -> FastAPI:
    """
    Build the billing API.

    Args:
        services: "invoice", "mrr" and "subscription" service instances
    """
    app = FastAPI(title="Billing core")
    # Last added runs first: request ids exist before the tenant check responds
    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_billing_router(services), prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
