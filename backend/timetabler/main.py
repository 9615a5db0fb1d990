from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timetabler.api.routes import generator, health
from timetabler.core.config import get_settings
from timetabler.core.exceptions import AppError
from timetabler.core.logging import setup_logging
from timetabler.db.bootstrap import ensure_schema

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging(environment=settings.environment, level_name=settings.log_level)
    ensure_schema()
    yield


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(generator.router, prefix=f"{settings.api_prefix}/timetable", tags=["timetable"])
