from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

Row = dict[str, Any]


class RelationalStore(Protocol):
    """
    Generic table access. Every method raises `StoreError` on failure.

    `match` is an equality filter; a `None` value means "column IS NULL".
    """

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] = ("*",),
        match: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row: ...

    async def update(self, table: str, values: Mapping[str, Any], *, match: Mapping[str, Any]) -> int: ...

    async def aclose(self) -> None: ...
