"""Shared base for persisted store records."""

import uuid
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def new_id(prefix: str) -> Callable[[], str]:
    """Default factory for record ids like ``order_3f2a...``."""

    def _factory() -> str:
        return f"{prefix}_{uuid.uuid4().hex}"

    return _factory


class StoreModel(BaseModel):
    """Python attributes in snake_case, persisted fields in camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible dict as stored by every backend. Unset optionals are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]):
        return cls.model_validate(record)
