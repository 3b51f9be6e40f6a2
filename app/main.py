import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.routers import auth, admin_users, certificates, reports
from app.core.config import settings
from app.core.errors import ErrorCode, RelayError
from app.core.redis import RedisClient
from app.core.timezone import get_utc_now, to_iso
from app.schemas.auth import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Startup and shutdown events"""
    print("\n" + "=" * 50)
    print("  Starting Certificados Relay API...")
    print("=" * 50)
    print(f"  Environment: {settings.APP_ENV}")
    print("-" * 50)

    try:
        from app.core.supabase import get_gateway
        status_code = get_gateway().ping()
        print(f"  [OK]   Supabase  ({settings.SUPABASE_URL}, status {status_code})")
    except Exception as e:
        print(f"  [FAIL] Supabase  - {e}")

    if settings.OTP_STORE_BACKEND == "redis" or settings.REDIS_HOST:
        try:
            RedisClient.get_client()
            print(f"  [OK]   Redis     ({settings.REDIS_HOST}:{settings.REDIS_PORT})")
        except Exception as e:
            print(f"  [FAIL] Redis     - {e}")
    else:
        print("  [--]   Redis     (not configured, OTP store in memory)")

    try:
        from app.core.otp import SMTPMailer
        SMTPMailer().ping()
        print(f"  [OK]   SMTP      ({settings.SMTP_HOST}:{settings.SMTP_PORT})")
    except Exception as e:
        print(f"  [FAIL] SMTP      - {e}")

    print("-" * 50)
    print("  Certificados Relay API is ready!")
    print("=" * 50 + "\n")
    yield

    print("\nShutting down Certificados Relay API...")
    if RedisClient.is_available():
        RedisClient.close()


is_production = settings.APP_ENV == "production"

app = FastAPI(
    title="Certificados Relay API",
    lifespan=lifespan,
    docs_url=None if is_production else "/docs",
    redoc_url=None if is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RelayError)
async def relay_error_handler(_request: Request, exc: RelayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    code = ErrorCode.RESOURCE_NOT_FOUND if exc.status_code == 404 else ErrorCode.VALIDATION_ERROR
    if exc.status_code >= 500:
        code = ErrorCode.INTERNAL_ERROR
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "code": code.value},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Solicitud inválida"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "code": ErrorCode.VALIDATION_ERROR.value},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc), "code": ErrorCode.INTERNAL_ERROR.value},
    )


@app.get("/api/health", response_model=HealthResponse)
def health_check():
    return HealthResponse(status="ok", timestamp=to_iso(get_utc_now()))


app.include_router(auth.router)
app.include_router(admin_users.router)
app.include_router(certificates.router)
app.include_router(reports.router)
