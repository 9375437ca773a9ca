from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from . import config
from .routers import question_bank, auth, test_routers, student_routers, students_routers, result_routers
from .db import create_db_and_tables
from .errors import DrivingSchoolError
from .security import auth_backend, app_users
from .dependencies import users_router_permission, get_registry
from .schemas.user_schema import UserCreate, UserRead, UserUpdate

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # run once when app starts
    await create_db_and_tables()
    logger.info("Driving school service started")
    yield
    # stop every running test clock; snapshots stay for resume
    await get_registry().shutdown()


async def domain_error_handler(request: Request, exc: DrivingSchoolError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app = FastAPI(title="Driving School", lifespan=lifespan)
app.add_exception_handler(DrivingSchoolError, domain_error_handler)


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,  # which sites can call this API
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Attach users router with small permission check. This router provides /users and /users/me
app.include_router(
    app_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(users_router_permission)],
)


app.include_router(question_bank.router, prefix="/api")
app.include_router(test_routers.router, prefix="/api")
app.include_router(student_routers.router, prefix="/api")
app.include_router(students_routers.router, prefix="/api")
app.include_router(result_routers.router, prefix="/api", tags=["Results"])

# Auth routers
app.include_router(app_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(auth.router)
app.include_router(app_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
