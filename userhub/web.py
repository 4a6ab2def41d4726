"""Browser interface for the user directory."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Literal, Optional, Sequence

import anyio
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from .database import Database, StoreError
from .models import User

logger = logging.getLogger("userhub.web")

SortColumn = Literal["id", "name", "email"]
SortOrder = Literal["asc", "desc"]

SORTABLE_COLUMNS: tuple[SortColumn, ...] = ("id", "name", "email")
EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"


@dataclass(frozen=True)
class UserListView:
    """Search and sort state for the users table."""

    search: str = ""
    sort_by: Optional[SortColumn] = None
    order: SortOrder = "asc"

    @classmethod
    def from_query(
        cls,
        search: Optional[str],
        sort_by: Optional[str],
        order: Optional[str],
    ) -> "UserListView":
        column = sort_by if sort_by in SORTABLE_COLUMNS else None
        direction: SortOrder = "desc" if order == "desc" else "asc"
        return cls(search=(search or "").strip(), sort_by=column, order=direction)  # type: ignore[arg-type]

    def filter(self, users: Sequence[User]) -> List[User]:
        if not self.search:
            return list(users)
        needle = self.search.lower()
        return [
            user
            for user in users
            if needle in user.name.lower() or needle in user.email.lower()
        ]

    def sort(self, users: Sequence[User]) -> List[User]:
        if self.sort_by is None:
            return list(users)
        column = self.sort_by
        # Python's sort is stable, so equal keys keep their original order.
        return sorted(users, key=lambda user: getattr(user, column), reverse=self.order == "desc")

    def apply(self, users: Sequence[User]) -> List[User]:
        return self.sort(self.filter(users))

    def toggled(self, column: SortColumn) -> "UserListView":
        """Return the view that clicking ``column``'s header produces."""
        if self.sort_by == column:
            return UserListView(self.search, column, "desc" if self.order == "asc" else "asc")
        return UserListView(self.search, column, "asc")

    def indicator(self, column: SortColumn) -> str:
        if self.sort_by != column:
            return ""
        return "▲" if self.order == "asc" else "▼"

    def query_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.search:
            params["q"] = self.search
        if self.sort_by:
            params["sort"] = self.sort_by
            params["order"] = self.order
        return params


def _template_environment() -> Jinja2Templates:
    base_dir = Path(__file__).resolve().parent
    return Jinja2Templates(directory=str(base_dir / "templates"))


def register_ui_routes(app: FastAPI, database: Database) -> None:
    """Expose the HTML user management page on the provided FastAPI app."""

    templates = _template_environment()
    static_dir = Path(__file__).resolve().parent / "static"
    if static_dir.exists():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

    router = APIRouter(include_in_schema=False)

    @router.get("/", response_class=HTMLResponse, name="ui_users")
    async def users_page(
        request: Request,
        q: Optional[str] = Query(default=None),
        sort: Optional[str] = Query(default=None),
        order: Optional[str] = Query(default=None),
    ):
        view = UserListView.from_query(q, sort, order)
        load_error: Optional[str] = None
        try:
            users = await anyio.to_thread.run_sync(database.list_users)
        except StoreError as exc:
            logger.warning("Unable to load users for the page: %s", exc)
            users = []
            load_error = "Failed to get users"

        context = {
            "view": view,
            "users": view.apply(users),
            "total_users": len(users),
            "columns": SORTABLE_COLUMNS,
            "email_pattern": EMAIL_PATTERN,
            "user_data": json.dumps([user.to_dict() for user in users]).replace("<", "\\u003c"),
            "load_error": load_error,
        }
        return templates.TemplateResponse(request, "users.html", context)

    app.include_router(router)


__all__ = ["UserListView", "register_ui_routes", "SORTABLE_COLUMNS", "EMAIL_PATTERN"]
