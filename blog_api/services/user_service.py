"""
User service — lifecycle of the User entity.

Email uniqueness is checked before every write and backed by the unique
constraint on ``users.email``; a concurrent writer that slips past the
check is rejected by the database, which the gateway reports as a
``ConflictError`` as well.

Deleting a user resolves the user's posts according to the configured
``DeletePolicy``.  The check and every delete run in one gateway
transaction with the user row locked, so a post created concurrently
either commits before the delete sees it or fails its foreign key.
"""
import logging
from typing import Any, Mapping

from blog_api.config import DeletePolicy
from blog_api.errors import ConflictError
from blog_api.gateway import DataGateway, Record
from blog_api.schemas import UserCreate, UserUpdate
from blog_api.services.base import EntityService, isoformat

logger = logging.getLogger(__name__)

_FILTER_KEYS = {"email", "name", "search"}


def _user_to_dict(user: Record) -> dict:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "created_at": isoformat(user["created_at"]),
        "updated_at": isoformat(user["updated_at"]),
    }


class UserService(EntityService):
    entity = "user"
    sortable_fields = frozenset({"id", "name", "email", "created_at"})

    def __init__(
        self,
        gateway: DataGateway,
        delete_policy: DeletePolicy | str = DeletePolicy.REJECT,
    ) -> None:
        super().__init__(gateway)
        self.delete_policy = DeletePolicy(delete_policy)

    def _serialize(self, record: Record) -> dict:
        return _user_to_dict(record)

    def _build_where(self, filters: Mapping[str, Any] | None) -> dict:
        filters = dict(filters or {})
        self._check_filter_keys(filters, _FILTER_KEYS)

        where: dict = {}
        for key in ("email", "name"):
            if filters.get(key) is not None:
                where[key] = filters[key]
        search = filters.get("search")
        if search:
            where["OR"] = [
                {"name": {"icontains": search}},
                {"email": {"icontains": search}},
            ]
        return where

    def _email_taken(self, email: str) -> ConflictError:
        return ConflictError(
            f"A user with email {email!r} already exists",
            entity=self.entity,
            identifier=email,
            constraint="users.email",
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create(self, data: Mapping[str, Any] | UserCreate) -> dict:
        """Create a user and return it with its assigned ``id``."""
        payload = self._validate(UserCreate, data)

        async with self._gateway.transaction() as tx:
            if await tx.find_unique(self.entity, {"email": payload.email}) is not None:
                raise self._email_taken(payload.email)
            record = await tx.create(self.entity, payload.model_dump())

        logger.info("Created user id=%s", record["id"])
        return _user_to_dict(record)

    async def update(self, user_id: int, data: Mapping[str, Any] | UserUpdate) -> dict:
        """
        Apply only the fields present in *data*.

        An empty update returns the current record without writing.
        """
        payload = self._validate(UserUpdate, data)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return await self.get(user_id)

        async with self._gateway.transaction() as tx:
            if await tx.find_unique(self.entity, {"id": user_id}, lock="update") is None:
                raise self._not_found(user_id)
            if "email" in changes:
                holder = await tx.find_unique(self.entity, {"email": changes["email"]})
                if holder is not None and holder["id"] != user_id:
                    raise self._email_taken(changes["email"])
            record = await tx.update(self.entity, {"id": user_id}, changes)
            if record is None:
                raise self._not_found(user_id)

        logger.info("Updated user id=%s fields=%s", user_id, sorted(changes))
        return _user_to_dict(record)

    async def delete(self, user_id: int) -> dict:
        """
        Delete a user and return the removed record.

        Under ``REJECT`` a user who still owns posts is refused with
        ``ConflictError`` and nothing changes.  Under ``CASCADE`` the
        user's posts are deleted in the same transaction.
        """
        async with self._gateway.transaction() as tx:
            user = await tx.find_unique(self.entity, {"id": user_id}, lock="update")
            if user is None:
                raise self._not_found(user_id)

            dependents = await tx.count("post", {"owner_id": user_id})
            if dependents and self.delete_policy is DeletePolicy.REJECT:
                logger.warning(
                    "Refused to delete user id=%s: %d dependent post(s)", user_id, dependents
                )
                raise ConflictError(
                    f"User {user_id} still owns {dependents} post(s)",
                    entity=self.entity,
                    identifier=user_id,
                    constraint="posts.owner_id",
                )

            removed = await tx.delete_many("post", {"owner_id": user_id}) if dependents else 0
            await tx.delete(self.entity, {"id": user_id})

        logger.info("Deleted user id=%s (cascaded %d post(s))", user_id, removed)
        return _user_to_dict(user)
