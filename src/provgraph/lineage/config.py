from __future__ import annotations

from dataclasses import dataclass

from provgraph.errors import ConfigurationError
from provgraph.settings import settings

SENTINELS = {"default", "null"}


def _token(tokens: list[str], i: int, fallback: str) -> str:
    if i >= len(tokens) or tokens[i].lower() in SENTINELS:
        return fallback
    return tokens[i]


@dataclass(frozen=True)
class ConnectionArgs:
    """Parsed `driver url username password` storage arguments.

    Each token may be `default` or `null` (any case) to take the built-in
    value; missing trailing tokens count as `default`.
    """

    driver: str
    url: str
    username: str = ""
    password: str = ""

    @classmethod
    def parse(cls, arguments: str | None) -> ConnectionArgs:
        tokens = (arguments or "").split()
        if len(tokens) > 4:
            raise ConfigurationError(
                f"expected at most 4 tokens 'driver url username password', got {len(tokens)}"
            )
        return cls(
            driver=_token(tokens, 0, settings.sql_driver),
            url=_token(tokens, 1, settings.sql_url),
            username=_token(tokens, 2, ""),
            password=_token(tokens, 3, ""),
        )

    def connect_kwargs(self) -> dict[str, str]:
        kw: dict[str, str] = {}
        if self.username:
            kw["user"] = self.username
        if self.password:
            kw["password"] = self.password
        return kw
