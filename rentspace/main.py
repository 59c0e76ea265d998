import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware import Middleware

from rentspace.core.config import settings
from rentspace.core.exceptions import AppError
from .database import engine, Base
from .routers import auth, two_factor

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Startup: database tables checked/created")
    yield


middleware = [
    Middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS),
    Middleware(CORSMiddleware,
               allow_origins=settings.CORS_ORIGINS,
               allow_credentials=True,
               allow_methods=["*"],
               allow_headers=["*"]),

    Middleware(GZipMiddleware, minimum_size=1000)
]

app = FastAPI(
    title="Rent Space Auth Api",
    description="Account registration, verification, sessions and two-factor authentication",
    version="1.0.0",
    lifespan=lifespan,
    middleware=middleware
)


def error_response(status_code: int, message: str, errors=None) -> JSONResponse:
    content = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return error_response(400, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Server Error")


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(two_factor.router, prefix="/auth/2fa", tags=["Two-Factor Authentication"])


@app.get("/")
def health_check():
    return {"success": True, "data": {"status": "ok", "message": "Nice and Healthy"}}
