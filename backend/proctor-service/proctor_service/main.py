"""
Proctor Integrity Service - FastAPI Application
"""
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .proctor.api import router as proctor_router
from .utils.logging import Colors, log_error, log_request, log_startup
from .utils.logging_config import setup_logging


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Event derivation, integrity scoring and reporting for proctored sessions",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


# ============================================================================
# Request Logging Middleware
# ============================================================================

QUIET_PATHS = ("/health", "/api/proctor/health", "/favicon.ico")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    method = request.method
    path = request.url.path

    try:
        response = await call_next(request)
    except Exception as e:
        log_error("RequestError", f"{method} {path}: {e}")
        raise

    if path not in QUIET_PATHS:
        log_request(method, path, response.status_code, int((time.time() - start) * 1000))
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(proctor_router)


@app.on_event("startup")
async def startup_event():
    """Configure logging and print the startup banner."""
    setup_logging(
        service_name="proctor-service",
        level=settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE,
        log_dir=settings.LOG_DIR
    )
    log_startup(settings.APP_NAME, settings.PORT)

    print(f"{Colors.DIM}Configuration:{Colors.RESET}")
    print(f"  Store: {Colors.CYAN}{settings.STORE_BACKEND}{Colors.RESET}")
    print(f"  Focus loss after: {Colors.CYAN}{settings.FOCUS_LOSS_SECONDS}s{Colors.RESET}")
    print(f"  No face after: {Colors.CYAN}{settings.NO_FACE_SECONDS}s{Colors.RESET}")
    print(f"  Object confidence: {Colors.CYAN}>{settings.SUSPICIOUS_CONFIDENCE}{Colors.RESET}")
    print(f"  Debug Mode: {Colors.CYAN}{settings.DEBUG}{Colors.RESET}")
    print()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": "1.0.0"
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "docs": "/docs" if settings.DEBUG else "Disabled in production"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("proctor_service.main:app", host="0.0.0.0", port=settings.PORT, reload=settings.DEBUG)
