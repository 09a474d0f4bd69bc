import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blog_api import __version__
from blog_api.config import settings
from blog_api.database import create_tables, engine
from blog_api.errors import ServiceError, ValidationError
from blog_api.middleware import TimingMiddleware
from blog_api.routers import posts, users

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_tables()
    logger.info(
        "Blog API started (env=%s, user delete policy=%s)",
        settings.APP_ENV,
        settings.USER_DELETE_POLICY.value,
    )
    yield
    await engine.dispose()


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render FastAPI request validation failures in the service error shape."""
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        # Drop the "body" / "query" / "path" prefix
        field = ".".join(loc[1:]) or ".".join(loc)
        details.append({"field": field, "message": err.get("msg", "Invalid value")})
    error = ValidationError("Invalid request", details=details)
    return await service_error_handler(request, error)


app = FastAPI(
    title="Blog API",
    description="Users and their posts, with referential integrity on user deletion",
    version=__version__,
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)

# Routers
app.include_router(users.router)
app.include_router(posts.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": __version__}
