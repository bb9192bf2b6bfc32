from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class AccessTokenSource(Protocol):
    """Anything that can hand out the current portal bearer token.

    Token refresh lives outside this service; the manager only reads.
    """

    @property
    def access_token(self) -> str | None:  # pragma: no cover
        ...


@dataclass(slots=True)
class StaticTokenSource:
    access_token: str | None = None
