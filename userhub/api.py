"""FastAPI application that exposes the user directory endpoints."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

import anyio
from fastapi import FastAPI, File, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .database import Database, StoreError, UserNotFoundError, ValidationError
from .importer import DecodeError, MissingFileError, import_users
from .models import User

logger = logging.getLogger("userhub.api")


class UserPayload(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    email: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class UserMutationResponse(BaseModel):
    message: str
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class DeleteAllResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    total_deleted: int = Field(alias="totalDeleted")


class SkippedRow(BaseModel):
    row: int
    status: str
    reason: Optional[str] = None


class ImportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    total_inserted: int = Field(alias="totalInserted")
    total_rows: int = Field(alias="totalRows")
    skipped: List[SkippedRow] = Field(default_factory=list)


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    *,
    database: Database,
    initialize_database: bool = False,
    lifespan=None,
) -> FastAPI:
    """Create the JSON API application bound to ``database``."""

    if initialize_database:
        database.initialize()

    app = FastAPI(
        title="User Directory",
        description="Create, edit, delete and bulk import user records",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = database
    register_api_routes(app, database)
    return app


def register_api_routes(app: FastAPI, database: Database) -> None:
    """Attach the user endpoints and error translation to ``app``."""

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/users", response_model=List[UserResponse])
    async def list_users() -> List[UserResponse]:
        users = await anyio.to_thread.run_sync(database.list_users)
        return [user_to_response(user) for user in users]

    @app.post("/users", response_model=UserMutationResponse)
    async def create_user(payload: UserPayload) -> UserMutationResponse:
        user = await anyio.to_thread.run_sync(database.create_user, payload.name, payload.email)
        return UserMutationResponse(message="User added successfully", user=user_to_response(user))

    @app.delete("/users", response_model=DeleteAllResponse)
    async def delete_all_users() -> DeleteAllResponse:
        removed = await anyio.to_thread.run_sync(database.delete_all_users)
        return DeleteAllResponse(message="All users deleted successfully", total_deleted=removed)

    @app.put("/users/{user_id}", response_model=UserMutationResponse)
    async def update_user(user_id: int, payload: UserPayload) -> UserMutationResponse:
        user = await anyio.to_thread.run_sync(
            database.update_user, user_id, payload.name, payload.email
        )
        return UserMutationResponse(message="User updated successfully", user=user_to_response(user))

    @app.delete("/users/{user_id}", response_model=MessageResponse)
    async def delete_user(user_id: int) -> MessageResponse:
        await anyio.to_thread.run_sync(database.delete_user, user_id)
        return MessageResponse(message=f"User {user_id} deleted successfully")

    @app.post("/uploadFile", response_model=ImportResponse)
    async def upload_file(file: Optional[UploadFile] = File(default=None)) -> ImportResponse:
        if file is None:
            raise MissingFileError("No file provided")
        try:
            payload = await file.read()
        finally:
            await file.close()

        report = await anyio.to_thread.run_sync(import_users, database, payload)
        return ImportResponse(
            message="Users inserted successfully!",
            total_inserted=report.total_inserted,
            total_rows=report.total_rows,
            skipped=[SkippedRow(**outcome.to_dict()) for outcome in report.skipped],
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return _error(status.HTTP_400_BAD_REQUEST, details or "Invalid request")

    @app.exception_handler(ValidationError)
    async def handle_validation_error(_: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(MissingFileError)
    async def handle_missing_file(_: Request, exc: MissingFileError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(UserNotFoundError)
    async def handle_not_found(_: Request, exc: UserNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(DecodeError)
    async def handle_decode_error(_: Request, exc: DecodeError):
        logger.error("Rejected upload: %s", exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(StoreError)
    async def handle_store_error(_: Request, exc: StoreError):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


__all__ = ["create_app", "register_api_routes", "user_to_response"]
