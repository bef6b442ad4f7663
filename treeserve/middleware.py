"""
Middleware for treeserve
"""

import logging
import time
from typing import Callable, Optional
from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .models import ApiResponse, ResponseCode
from .auth import AuthGate, LOGIN_PATH, get_auth_context

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("treeserve.access")


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One log line per request, levelled by status class"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            self._log_access(request, None, time.perf_counter() - started, error=repr(e))
            raise

        self._log_access(request, response, time.perf_counter() - started)
        return response

    def _log_access(
        self,
        request: Request,
        response: Optional[Response],
        elapsed: float,
        error: Optional[str] = None,
    ):
        status = response.status_code if response is not None else 500
        size = response.headers.get("content-length", "-") if response is not None else "-"
        context = get_auth_context(request)

        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"

        line = (
            f'{context["ip"] or "-"} "{request.method} {target}" {status} {size} '
            f'{elapsed * 1000:.2f}ms auth={context["admission"]} '
            f'ua="{context["user_agent"] or "-"}"'
        )
        if error:
            line = f"{line} error={error}"

        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        access_logger.log(level, line)


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Turns anything a handler lets escape into a 500 envelope"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            return JSONResponse(
                status_code=500,
                content=ApiResponse(
                    code=ResponseCode.INTERNAL_ERROR.value,
                    msg="Internal server error",
                ).to_dict(),
            )


class AuthMiddleware(BaseHTTPMiddleware):
    """Admits authenticated requests and sends the rest to the login page"""

    def __init__(self, app: FastAPI, gate: AuthGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        decision = self.gate.evaluate(request)
        request.state.admission = decision.admission

        if not decision.admitted:
            logger.debug(f"Unauthenticated request redirected: {request.url.path}")
            return RedirectResponse(url=LOGIN_PATH, status_code=302)

        return await call_next(request)


def setup_middleware(app: FastAPI, gate: AuthGate):
    """Setup all middleware for the application"""

    # Added innermost first
    app.add_middleware(AuthMiddleware, gate=gate)
    app.add_middleware(ExceptionHandlerMiddleware)
    app.add_middleware(AccessLogMiddleware)

    logger.info("Middleware setup complete")
