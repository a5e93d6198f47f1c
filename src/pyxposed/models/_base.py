"""Base model shared by the pyxposed data types.

Persisted and wire payloads use camelCase keys (``isAccurate``,
``lookupTime``); Python code uses snake_case.  :class:`XposedBaseModel`
maps between the two with ``alias_generator=to_camel`` and serialises by
alias so stored blobs keep the established format.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class XposedBaseModel(BaseModel):
    """Frozen model with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump using camelCase keys, skipping unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
