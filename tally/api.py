"""FastAPI application that exposes the resource tracking endpoints."""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable, Coroutine, Dict, List, Optional, Type

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.routing import APIRoute
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .backup import BackupService
from .config import DEFAULT_PASSWORD, Settings, load_settings
from .database import PASSWORD_MIN_LENGTH, Database
from .errors import (
    BackupImportError,
    ConflictError,
    InternalError,
    NotFoundError,
    TallyError,
    UnauthorizedError,
    ValidationError,
)
from .models import User
from .resources import Clock, ResourceService, ResourceView, utc_now
from .security import TokenAuth, issue_token

logger = logging.getLogger("tally.api")

_ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    InternalError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    token: str
    username: str


class ResourceResponse(BaseModel):
    id: int
    name: str
    group: str
    expire_at: int
    created_at: int
    remaining_days: int


class CreateResourceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    group: Optional[str] = Field(default=None, max_length=255)
    expire_at: int


class UpdateResourceRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    group: Optional[str] = Field(default=None, max_length=255)
    expire_at: Optional[int] = None


class RenewRequest(BaseModel):
    days: Optional[int] = None
    expire_at: Optional[int] = None


class MessageResponse(BaseModel):
    message: str


class BackupResource(BaseModel):
    name: str
    group: str
    expire_at: int
    created_at: int


class BackupData(BaseModel):
    version: str
    export_at: int
    resources: List[BackupResource]


class RestoreRequest(BaseModel):
    mode: str = Field(..., min_length=1)
    data: Dict[str, Any]


class RestoreResponse(BaseModel):
    message: str
    imported: int
    mode: str


class UserResponse(BaseModel):
    id: int
    username: str


class UpdateUsernameRequest(BaseModel):
    new_username: str = Field(..., min_length=1, max_length=128)


class UpdatePasswordRequest(BaseModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)


def view_to_response(view: ResourceView) -> ResourceResponse:
    return ResourceResponse(
        id=view.id,
        name=view.name,
        group=view.group,
        expire_at=view.expire_at,
        created_at=view.created_at,
        remaining_days=view.remaining_days,
    )


def user_to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, username=user.username)


def _error_response(status_code: int, message: str, **extra: object) -> JSONResponse:
    content: Dict[str, object] = {"error": message}
    content.update(extra)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    if location:
        return f"Invalid request: {location}: {message}"
    return f"Invalid request: {message}"


def prepare_database(database: Database, settings: Settings) -> Database:
    """Create the schema and the bootstrap account."""

    database.initialize()
    created = database.bootstrap_default_user(settings.default_username, settings.default_password)
    if created is not None and settings.default_password == DEFAULT_PASSWORD:
        logger.warning(
            "The default account '%s' uses the built-in password. Change it after the first login.",
            created.username,
        )
    return database


def authenticated_route(auth: TokenAuth) -> Type[APIRoute]:
    """Build a route class that checks the bearer token before the body is parsed."""

    class AuthenticatedRoute(APIRoute):
        def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
            handler = super().get_route_handler()

            async def authenticated_handler(request: Request) -> Response:
                await auth(request)
                return await handler(request)

            return authenticated_handler

    return AuthenticatedRoute


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP status codes with an ``error`` message body."""

    async def handle_tally_error(_: Request, exc: TallyError) -> JSONResponse:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        for error_class, code in _ERROR_STATUS.items():
            if isinstance(exc, error_class):
                status_code = code
                break
        if isinstance(exc, BackupImportError):
            logger.error("Backup import aborted: %s", exc.message)
            return _error_response(status_code, exc.message, imported=exc.imported)
        return _error_response(status_code, exc.message)

    for error_class in _ERROR_STATUS:
        app.add_exception_handler(error_class, handle_tally_error)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, _describe_validation_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return _error_response(exc.status_code, "Not found")
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(sqlite3.DatabaseError)
    async def handle_database_error(_: Request, exc: sqlite3.DatabaseError) -> JSONResponse:
        logger.exception("Database operation failed", exc_info=exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database operation failed")


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    clock: Clock | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Instantiate the JSON API. Routes are registered without the API prefix."""

    if settings is None:
        settings = load_settings()

    if database is None:
        database = prepare_database(Database(settings.database_path), settings)
    elif initialize_database:
        prepare_database(database, settings)

    clock = clock or utc_now
    resources = ResourceService(database, clock=clock)
    backups = BackupService(database, clock=clock)
    auth = TokenAuth(settings.jwt_secret)

    app = FastAPI(
        title="Tally API",
        description="Track expiring resources such as domains, subscriptions and licenses",
        version="1.0.0",
    )
    app.state.database = database
    app.state.settings = settings
    register_exception_handlers(app)

    def get_db() -> Database:
        return database

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/login", response_model=LoginResponse)
    async def login(payload: LoginRequest, db: Database = Depends(get_db)) -> LoginResponse:
        user = db.authenticate_user(payload.username, payload.password)
        if user is None:
            logger.warning("Failed login attempt for %s", payload.username)
            raise UnauthorizedError("Invalid username or password")
        return LoginResponse(token=issue_token(user, settings), username=user.username)

    protected_router = APIRouter(route_class=authenticated_route(auth))

    @protected_router.get("/resources", response_model=List[ResourceResponse])
    async def list_resources() -> List[ResourceResponse]:
        return [view_to_response(view) for view in resources.list_resources()]

    @protected_router.post(
        "/resources",
        response_model=ResourceResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_resource(payload: CreateResourceRequest) -> ResourceResponse:
        view = resources.create_resource(
            name=payload.name,
            group=payload.group,
            expire_at=payload.expire_at,
        )
        return view_to_response(view)

    @protected_router.put("/resources/{resource_id}", response_model=ResourceResponse)
    async def update_resource(resource_id: int, payload: UpdateResourceRequest) -> ResourceResponse:
        changes = payload.model_dump(exclude_unset=True)
        return view_to_response(resources.update_resource(resource_id, changes))

    @protected_router.patch("/resources/{resource_id}/renew", response_model=ResourceResponse)
    async def renew_resource(resource_id: int, payload: RenewRequest) -> ResourceResponse:
        changes = payload.model_dump(exclude_unset=True)
        return view_to_response(resources.renew_resource(resource_id, changes))

    @protected_router.delete("/resources/{resource_id}", response_model=MessageResponse)
    async def delete_resource(resource_id: int) -> MessageResponse:
        resources.delete_resource(resource_id)
        return MessageResponse(message="Resource deleted")

    @protected_router.get("/groups", response_model=List[str])
    async def list_groups() -> List[str]:
        return resources.list_groups()

    @protected_router.get("/backup", response_model=BackupData)
    async def export_backup() -> Dict[str, Any]:
        return backups.export_backup()

    @protected_router.post("/backup/restore", response_model=RestoreResponse)
    async def restore_backup(payload: RestoreRequest) -> Dict[str, Any]:
        return backups.import_backup(payload.mode, payload.data)

    @protected_router.get("/user", response_model=UserResponse)
    async def read_current_user(
        user_id: int = Depends(auth),
        db: Database = Depends(get_db),
    ) -> UserResponse:
        user = db.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user_to_response(user)

    @protected_router.put("/user/username", response_model=MessageResponse)
    async def update_username(
        payload: UpdateUsernameRequest,
        user_id: int = Depends(auth),
        db: Database = Depends(get_db),
    ) -> MessageResponse:
        db.update_username(user_id, payload.new_username)
        return MessageResponse(message="Username updated successfully")

    @protected_router.put("/user/password", response_model=MessageResponse)
    async def update_password(
        payload: UpdatePasswordRequest,
        user_id: int = Depends(auth),
        db: Database = Depends(get_db),
    ) -> MessageResponse:
        db.change_password(user_id, payload.old_password, payload.new_password)
        return MessageResponse(message="Password updated successfully")

    app.include_router(protected_router)

    return app


__all__ = ["authenticated_route", "create_app", "prepare_database", "register_exception_handlers"]
