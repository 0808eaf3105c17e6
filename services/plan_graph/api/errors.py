"""
Domain exception -> HTTP response mapping

Services raise BasePlanException subclasses; one handler turns them into
the structured {"error": {code, message, details}} body with the status
from EXCEPTION_TO_STATUS. Anything else is logged with its context and
answered with a generic 500 body.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from exceptions import BasePlanException, status_for
from logging_config import get_logger, log_error

logger = get_logger(__name__)


async def plan_exception_handler(request: Request, exc: BasePlanException) -> JSONResponse:
    status_code = status_for(exc)
    logger.info(
        "request_rejected",
        path=request.url.path,
        status_code=status_code,
        code=exc.code,
        details=exc.details,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log_error(exc, {"method": request.method, "path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BasePlanException, plan_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
