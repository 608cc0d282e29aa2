import logging
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, WebSocket
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from taskhub import auth
from taskhub.config import CORS_ORIGINS, ENV, LOG_LEVEL, TOKEN_COOKIE, TOKEN_MAX_AGE
from taskhub.database import Base, engine, get_db
from taskhub.errors import AppError, NotFoundError, UnauthorizedError
from taskhub.notifications import NotificationHub
from taskhub.schemas import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TaskCreate,
    TaskOut,
    TaskQuery,
    TaskUpdate,
    UserPublic,
)
from taskhub.tasks import TaskService

# -------------------------
# LOGGING
# -------------------------
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("taskhub")

# -------------------------
# APP
# -------------------------
app = FastAPI(title="taskhub")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

# single in-process hub; handlers reach it through app.state
app.state.hub = NotificationHub()

COOKIE_OPTIONS = {
    "httponly": True,
    "secure": ENV == "production",
    "samesite": "lax",
    "max_age": int(TOKEN_MAX_AGE.total_seconds()),
}


# -------------------------
# ERRORS
# -------------------------
def error_body(message: str, status_code: int, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "statusCode": status_code, **extra}
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return error_body(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_body("Validation failed", 400, details=jsonable_encoder(exc.errors()))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_body("Internal server error", 500)


# -------------------------
# DEPENDENCIES
# -------------------------
def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_task_service(
    db: Session = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
) -> TaskService:
    return TaskService(db, hub)


# -------------------------
# AUTH
# -------------------------
auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/register", status_code=201, response_model=UserPublic)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    return auth.register(db, body.name, body.email, body.password)


@auth_router.post("/login", response_model=UserPublic)
def login(body: LoginRequest, response: Response, db: Session = Depends(get_db)):
    token, user = auth.login(db, body.email, body.password)
    response.set_cookie(TOKEN_COOKIE, token, **COOKIE_OPTIONS)
    return user


@auth_router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out"}


@auth_router.get("/me", response_model=UserPublic)
def me(user_id: str = Depends(auth.require_user), db: Session = Depends(get_db)):
    try:
        return auth.get_user(db, user_id)
    except NotFoundError:
        raise UnauthorizedError("Unauthorized")


# -------------------------
# TASKS
# -------------------------
task_router = APIRouter(
    prefix="/tasks",
    tags=["tasks"],
    dependencies=[Depends(auth.require_user)]
)


@task_router.post("", status_code=201, response_model=TaskOut)
def create_task(
    body: TaskCreate,
    user_id: str = Depends(auth.require_user),
    service: TaskService = Depends(get_task_service)
):
    return service.create_task(body, user_id)


@task_router.get("", response_model=list[TaskOut])
def list_tasks(
    status: str | None = None,
    priority: str | None = None,
    assigned_to_id: str | None = Query(None, alias="assignedToId"),
    creator_id: str | None = Query(None, alias="creatorId"),
    sort_by: str | None = Query(None, alias="sortBy"),
    order: str | None = None,
    user_id: str = Depends(auth.require_user),
    service: TaskService = Depends(get_task_service)
):
    # validated here so that empty strings count as "no filter"
    try:
        query = TaskQuery(
            status=status,
            priority=priority,
            assigned_to_id=assigned_to_id,
            creator_id=creator_id,
            sort_by=sort_by,
            order=order
        )
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors())
    return service.get_tasks(user_id, query)


@task_router.get("/{task_id}", response_model=TaskOut)
def get_task(task_id: str, service: TaskService = Depends(get_task_service)):
    return service.get_task(task_id)


@task_router.put("/{task_id}", response_model=TaskOut)
def update_task(
    task_id: str,
    body: TaskUpdate,
    user_id: str = Depends(auth.require_user),
    service: TaskService = Depends(get_task_service)
):
    return service.update_task(task_id, body, user_id)


@task_router.delete("/{task_id}", response_model=MessageResponse)
def delete_task(
    task_id: str,
    user_id: str = Depends(auth.require_user),
    service: TaskService = Depends(get_task_service)
):
    service.delete_task(task_id, user_id)
    return {"message": "Task deleted successfully"}


app.include_router(auth_router)
app.include_router(task_router)


# -------------------------
# REALTIME
# -------------------------
@app.websocket("/ws")
async def realtime(websocket: WebSocket, token: str | None = None):
    token = token or websocket.cookies.get(TOKEN_COOKIE)
    if not token:
        await websocket.close(code=1008)
        return

    try:
        user_id = auth.verify_token(token)["userId"]
    except UnauthorizedError:
        logger.info("Refused realtime connection with invalid token")
        await websocket.close(code=1008)
        return

    await websocket.app.state.hub.serve(websocket, user_id)


# -------------------------
# HEALTH
# -------------------------
@app.get("/health")
def health():
    return {"status": "ok"}
