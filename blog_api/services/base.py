"""
Behaviour shared by the entity services: input validation, filtered
pagination and batch iteration.
"""
import math
from typing import Any, AsyncIterator, Mapping

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from blog_api.config import settings
from blog_api.errors import NotFoundError, ValidationError
from blog_api.gateway import DataGateway, Record
from blog_api.schemas import PaginatedResponse


class EntityService:
    entity: str = ""
    # Columns that are safe to sort by; anything else falls back to ``id``.
    sortable_fields: frozenset[str] = frozenset({"id"})

    def __init__(self, gateway: DataGateway) -> None:
        self._gateway = gateway

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _serialize(self, record: Record) -> dict:
        raise NotImplementedError

    def _build_where(self, filters: Mapping[str, Any] | None) -> dict:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, schema: type[BaseModel], data: Any) -> BaseModel:
        """
        Coerce *data* (a mapping or a pydantic model) into *schema*,
        raising ``ValidationError`` with per-field details on failure.
        """
        if isinstance(data, schema):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        if not isinstance(data, Mapping):
            raise ValidationError(
                f"{self.entity} input must be a mapping of field names to values",
                entity=self.entity,
            )
        try:
            return schema.model_validate(dict(data))
        except PydanticValidationError as exc:
            details = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            raise ValidationError(
                f"Invalid {self.entity} input",
                entity=self.entity,
                details=details,
            ) from exc

    def _not_found(self, identifier: Any) -> NotFoundError:
        return NotFoundError(
            f"{self.entity.capitalize()} {identifier} not found",
            entity=self.entity,
            identifier=identifier,
        )

    def _check_filter_keys(self, filters: Mapping[str, Any], allowed: set[str]) -> None:
        unknown = set(filters) - allowed
        if unknown:
            raise ValidationError(
                f"Unsupported {self.entity} filter(s): {', '.join(sorted(unknown))}",
                entity=self.entity,
                constraint="unknown_filter",
            )

    async def _require(self, entity: str, identifier: Any, tx=None) -> Record:
        gateway = tx if tx is not None else self._gateway
        lock = "share" if tx is not None else None
        record = await gateway.find_unique(entity, {"id": identifier}, lock=lock)
        if record is None:
            raise NotFoundError(
                f"{entity.capitalize()} {identifier} not found",
                entity=entity,
                identifier=identifier,
            )
        return record

    async def _page(
        self,
        where: Mapping[str, Any],
        page: int,
        page_size: int,
        sort_by: str,
        sort_order: str,
    ) -> PaginatedResponse:
        if page < 1 or page_size < 1:
            raise ValidationError(
                "page and page_size must be positive integers",
                entity=self.entity,
                constraint="pagination",
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError(
                "sort_order must be 'asc' or 'desc'",
                entity=self.entity,
                constraint="pagination",
            )
        page_size = min(page_size, settings.MAX_PAGE_SIZE)
        sort_col = sort_by if sort_by in self.sortable_fields else "id"
        # ``id`` breaks ties so pages never overlap or skip rows.
        order_by = [(sort_col, sort_order)]
        if sort_col != "id":
            order_by.append(("id", "asc"))

        async with self._gateway.transaction() as tx:
            total = await tx.count(self.entity, where)
            rows = await tx.find_many(
                self.entity,
                where,
                order_by=order_by,
                offset=(page - 1) * page_size,
                limit=page_size,
            )

        return PaginatedResponse(
            items=[self._serialize(r) for r in rows],
            total=total,
            page=page,
            page_size=page_size,
            pages=math.ceil(total / page_size) if total > 0 else 0,
        )

    # ------------------------------------------------------------------
    # Shared public operations
    # ------------------------------------------------------------------

    async def list(
        self,
        filters: Mapping[str, Any] | None = None,
        page: int = 1,
        page_size: int = settings.DEFAULT_PAGE_SIZE,
        sort_by: str = "id",
        sort_order: str = "asc",
    ) -> PaginatedResponse:
        """Return one page of records matching *filters*."""
        return await self._page(self._build_where(filters), page, page_size, sort_by, sort_order)

    async def iterate(
        self,
        filters: Mapping[str, Any] | None = None,
        batch_size: int = 100,
    ) -> AsyncIterator[dict]:
        """
        Yield every record matching *filters* in ascending id order.

        Walks the table in batches keyed on the last id seen, so rows
        inserted behind the cursor are never yielded twice and the walk
        always ends.  Each call starts over from the beginning.
        """
        if batch_size < 1:
            raise ValidationError("batch_size must be positive", entity=self.entity)
        where = self._build_where(filters)
        last_id = 0
        while True:
            batch = await self._gateway.find_many(
                self.entity,
                {**where, "id": {"gt": last_id}},
                order_by=[("id", "asc")],
                limit=batch_size,
            )
            for record in batch:
                yield self._serialize(record)
            if len(batch) < batch_size:
                return
            last_id = batch[-1]["id"]

    async def get(self, identifier: int) -> dict:
        record = await self._gateway.find_unique(self.entity, {"id": identifier})
        if record is None:
            raise self._not_found(identifier)
        return self._serialize(record)


def isoformat(value) -> str | None:
    return value.isoformat() if value else None
