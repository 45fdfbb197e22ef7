"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.tenant_context import clear_current_tenant_id, set_current_tenant_id

TENANT_HEADER = "X-Tenant-Id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TenantContextMiddleware(BaseHTTPMiddleware):
    """
    Binds the request's tenant from the X-Tenant-Id header.

    Paths under the protected prefix are rejected with 400 when the header
    is missing or not a UUID. The tenant context is always cleared after
    the request.
    """

    def __init__(self, app, protected_prefix: str = "/api"):
        super().__init__(app)
        self._protected_prefix = protected_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self._protected_prefix):
            return await call_next(request)

        raw = request.headers.get(TENANT_HEADER)
        try:
            tenant_id = UUID(raw) if raw else None
        except ValueError:
            tenant_id = None

        if tenant_id is None:
            return JSONResponse(
                status_code=400,
                content=error_response(
                    ErrorCodes.MISSING_TENANT,
                    f"{TENANT_HEADER} header must carry a tenant UUID",
                    getattr(request.state, "request_id", None),
                ).model_dump(mode="json"),
            )

        set_current_tenant_id(tenant_id)
        request.state.tenant_id = tenant_id

        try:
            return await call_next(request)
        finally:
            clear_current_tenant_id()
