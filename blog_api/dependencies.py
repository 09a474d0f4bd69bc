"""
Composition root.

``build_services`` wires a gateway and both entity services for callers
outside HTTP (scripts, tests).  The FastAPI dependencies below build the
same graph per request; tests swap storage by overriding ``get_gateway``.
Nothing here is a global singleton except the session factory owned by
``blog_api.database``.
"""
from dataclasses import dataclass

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blog_api.config import DeletePolicy, settings
from blog_api.database import async_session
from blog_api.gateway import DataGateway
from blog_api.services import PostService, UserService


@dataclass(frozen=True)
class Services:
    gateway: DataGateway
    users: UserService
    posts: PostService


def build_services(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    delete_policy: DeletePolicy | str = settings.USER_DELETE_POLICY,
) -> Services:
    gateway = DataGateway(session_factory)
    return Services(
        gateway=gateway,
        users=UserService(gateway, delete_policy=delete_policy),
        posts=PostService(gateway),
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

def get_gateway() -> DataGateway:
    return DataGateway(async_session)


def get_user_service(gateway: DataGateway = Depends(get_gateway)) -> UserService:
    return UserService(gateway, delete_policy=settings.USER_DELETE_POLICY)


def get_post_service(gateway: DataGateway = Depends(get_gateway)) -> PostService:
    return PostService(gateway)


class PaginationParams:
    """
    Reusable dependency that parses pagination / sorting query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Items per page, clamped to ``settings.MAX_PAGE_SIZE``.
    sort_by:
        Column to sort by.  Services fall back to ``id`` for anything
        outside their sortable whitelist; unset keeps the listing default.
    sort_order:
        ``"asc"`` or ``"desc"``; unset keeps the listing default.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=settings.MAX_PAGE_SIZE,
            description="Number of items returned per page.",
        ),
        sort_by: str | None = Query(None, description="Column name to sort results by."),
        sort_order: str | None = Query(
            None,
            pattern="^(asc|desc)$",
            description="Sort direction: 'asc' or 'desc'.",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order

    def as_kwargs(self) -> dict:
        """Keyword arguments for a service listing; unset sort options keep its defaults."""
        kwargs = {"page": self.page, "page_size": self.page_size}
        if self.sort_by is not None:
            kwargs["sort_by"] = self.sort_by
        if self.sort_order is not None:
            kwargs["sort_order"] = self.sort_order
        return kwargs
