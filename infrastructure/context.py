from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class ContextScope:
    tenant_id: str
    user_id: str

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("ContextScope.tenant_id cannot be empty")


@dataclass
class RequestContextBundle:
    db: "AsyncSession"
    scope: ContextScope
