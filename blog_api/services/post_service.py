"""
Post service — lifecycle of the Post entity.

A post always references an existing owner.  The owner is looked up
through the gateway inside the same transaction as the write (never from
a cache), and the ``posts.owner_id`` foreign key backs the check.
"""
import logging
from typing import Any, Mapping

from blog_api.config import settings
from blog_api.gateway import Record
from blog_api.schemas import PaginatedResponse, PostCreate, PostUpdate
from blog_api.services.base import EntityService, isoformat

logger = logging.getLogger(__name__)

_FILTER_KEYS = {"owner_id", "published", "search"}


def _post_to_dict(post: Record) -> dict:
    return {
        "id": post["id"],
        "title": post["title"],
        "content": post["content"],
        "published": post["published"],
        "owner_id": post["owner_id"],
        "created_at": isoformat(post["created_at"]),
        "updated_at": isoformat(post["updated_at"]),
    }


class PostService(EntityService):
    entity = "post"
    sortable_fields = frozenset({"id", "title", "created_at", "published"})

    def _serialize(self, record: Record) -> dict:
        return _post_to_dict(record)

    def _build_where(self, filters: Mapping[str, Any] | None) -> dict:
        filters = dict(filters or {})
        self._check_filter_keys(filters, _FILTER_KEYS)

        where: dict = {}
        for key in ("owner_id", "published"):
            if filters.get(key) is not None:
                where[key] = filters[key]
        search = filters.get("search")
        if search:
            where["OR"] = [
                {"title": {"icontains": search}},
                {"content": {"icontains": search}},
            ]
        return where

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create(self, data: Mapping[str, Any] | PostCreate) -> dict:
        """Create a post for an existing owner; ``NotFoundError`` otherwise."""
        payload = self._validate(PostCreate, data)

        async with self._gateway.transaction() as tx:
            await self._require("user", payload.owner_id, tx)
            record = await tx.create(self.entity, payload.model_dump())

        logger.info("Created post id=%s owner_id=%s", record["id"], record["owner_id"])
        return _post_to_dict(record)

    async def update(self, post_id: int, data: Mapping[str, Any] | PostUpdate) -> dict:
        """
        Apply only the fields present in *data*.  Moving a post to another
        owner requires that owner to exist.
        """
        payload = self._validate(PostUpdate, data)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return await self.get(post_id)

        async with self._gateway.transaction() as tx:
            if await tx.find_unique(self.entity, {"id": post_id}, lock="update") is None:
                raise self._not_found(post_id)
            if "owner_id" in changes:
                await self._require("user", changes["owner_id"], tx)
            record = await tx.update(self.entity, {"id": post_id}, changes)
            if record is None:
                raise self._not_found(post_id)

        logger.info("Updated post id=%s fields=%s", post_id, sorted(changes))
        return _post_to_dict(record)

    async def delete(self, post_id: int) -> dict:
        record = await self._gateway.delete(self.entity, {"id": post_id})
        if record is None:
            raise self._not_found(post_id)
        logger.info("Deleted post id=%s", post_id)
        return _post_to_dict(record)

    async def publish(self, post_id: int) -> dict:
        """Mark a post as published.  Publishing twice is a no-op."""
        return await self.update(post_id, {"published": True})

    async def feed(
        self,
        search: str | None = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> PaginatedResponse:
        """Published posts, newest first, optionally matching *search*."""
        return await self.list(
            {"published": True, "search": search}, page, page_size, sort_by, sort_order
        )

    async def by_owner(
        self,
        owner_id: int,
        published: bool | None = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> PaginatedResponse:
        """
        Posts of one owner; ``published=False`` gives the owner's drafts.
        Fails with ``NotFoundError`` when the owner does not exist.
        """
        await self._require("user", owner_id)
        return await self.list(
            {"owner_id": owner_id, "published": published}, page, page_size, sort_by, sort_order
        )
