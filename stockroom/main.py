"""
Stockroom FastAPI Main Application
Entry point for the multi-location inventory REST API
"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from stockroom.api.v1.api_router import api_router
from stockroom.core.config import settings
from stockroom.core.database import check_db_connection, init_db
from stockroom.core.exceptions import StockroomError
from stockroom.core.logging import get_logger, setup_logging

logger = setup_logging()
api_logger = get_logger("api")

HTTP_ERROR_CODES = {
    401: "NOT_AUTHENTICATED",
    403: "INSUFFICIENT_PERMISSIONS",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## Stockroom Inventory API

    Multi-location food inventory with a period-locked price list.

    ### Key Features:
    - **Stock Ledger**: On hand and weighted average cost per location and item
    - **Deliveries**: Receipts at invoiced price with automatic price variance NCRs
    - **Issues**: Consumption at the current WAC
    - **Transfers**: Approval-gated movements between locations
    - **Periods**: Price lock, per-location readiness and atomic period close
    - **Reconciliation**: Consumption and cost per manday by location
    """,
    docs_url=settings.DOCS_URL,
    redoc_url=settings.REDOC_URL,
    openapi_url=settings.OPENAPI_URL,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add trusted host middleware for production
if not settings.DEBUG:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS
    )


def error_response(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    data = {"code": code, "message": message}
    if details is not None:
        data["details"] = details
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"statusCode": status_code, "data": data}),
        headers=headers,
    )


@app.exception_handler(StockroomError)
async def stockroom_exception_handler(request: Request, exc: StockroomError):
    """Application errors carry their own status, code and details"""
    if exc.status_code >= 500:
        api_logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        api_logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    api_logger.warning(f"{request.method} {request.url.path} invalid request: {len(errors)} error(s)")
    return error_response(400, "VALIDATION_ERROR", "Request validation failed", {"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return error_response(
        exc.status_code, code, str(exc.detail), headers=getattr(exc, "headers", None)
    )


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    """Constraint violations that slipped past service validation"""
    api_logger.warning(f"{request.method} {request.url.path} integrity error: {exc.orig}")
    return error_response(409, "CONFLICT", "The request conflicts with existing data")


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors
    """
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(
        500,
        "INTERNAL_ERROR",
        str(exc) if settings.DEBUG else "An unexpected error occurred",
    )


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring and load balancers

    Returns system status and database connectivity
    """
    db_status = check_db_connection()
    if not db_status:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "database": "connected",
        "debug": settings.DEBUG
    }


# System information endpoint
@app.get("/info", tags=["System"])
async def system_info():
    return {
        "application": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "api_version": "v1",
        "docs_url": settings.DOCS_URL,
        "currency": settings.DEFAULT_CURRENCY,
        "features": [
            "Weighted average cost stock ledger",
            "Period price lock with variance NCRs",
            "Approval-gated transfers",
            "Period close and reconciliation",
        ],
    }


# Application startup event
@app.on_event("startup")
async def startup_event():
    """
    Application startup tasks

    Create tables when configured to
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if settings.AUTO_CREATE_TABLES:
        init_db()
    logger.info("Application startup completed successfully")


# Application shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down application")


# Include API routers
app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stockroom.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
