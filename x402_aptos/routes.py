"""Route table: which requests cost what.

Pattern grammar is ``[METHOD ]/seg/seg/...``. A ``*`` segment matches
exactly one path segment. A terminal ``**`` segment matches one or more
trailing segments. A pattern holds at most one wildcard segment.

Matching precedence:
    1. Exact pattern with a method
    2. Exact pattern without a method
    3. Wildcard patterns, in declaration order

A request that matches nothing is free, so the table is validated when
it is built rather than when it is used.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

from .schemas import AssetSpec, PriceSpec, RouteConfigurationError

ANY_METHOD = "*"
SEGMENT_WILDCARD = "*"
SUFFIX_WILDCARD = "**"

HTTP_METHODS = frozenset(
    {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"}
)


def normalize_path(path: str) -> str:
    """Normalize path for matching."""
    # Remove query string and fragment
    path = path.split("?")[0].split("#")[0]

    path = unquote(path)

    # Normalize slashes
    path = re.sub(r"/+", "/", path)
    path = path.rstrip("/")

    return path or "/"


@dataclass(frozen=True)
class RoutePattern:
    """A parsed route pattern."""

    method: str
    path: str
    regex: re.Pattern[str]
    wildcard: str | None = None

    @property
    def is_exact(self) -> bool:
        return self.wildcard is None

    @property
    def key(self) -> str:
        return f"{self.method} {self.path.lower()}"

    def matches(self, method: str, normalized_path: str) -> bool:
        if self.method != ANY_METHOD and self.method != method.upper():
            return False
        return self.regex.match(normalized_path) is not None

    @classmethod
    def parse(cls, pattern: str) -> RoutePattern:
        """Parse a route pattern.

        Args:
            pattern: Pattern such as "GET /weather" or "/premium/**".

        Returns:
            Parsed RoutePattern.

        Raises:
            ValueError: If the pattern breaks the grammar.
        """
        parts = pattern.split(None, 1)  # Split on whitespace
        if not parts:
            raise ValueError("empty route pattern")

        if len(parts) == 2:
            method = parts[0].upper()
            path = parts[1].strip()
            if method not in HTTP_METHODS and method != ANY_METHOD:
                raise ValueError(f"invalid HTTP method {parts[0]!r} in {pattern!r}")
        else:
            method = ANY_METHOD
            path = parts[0]

        if not path.startswith("/"):
            raise ValueError(f"route path must start with '/': {pattern!r}")
        if "?" in path or "#" in path:
            raise ValueError(f"route path must not contain a query or fragment: {pattern!r}")

        path = normalize_path(path)
        segments = path.split("/")[1:] if path != "/" else []

        wildcard: str | None = None
        regex_parts: list[str] = []
        for index, segment in enumerate(segments):
            if segment in (SEGMENT_WILDCARD, SUFFIX_WILDCARD):
                if wildcard is not None:
                    raise ValueError(f"only one wildcard segment allowed: {pattern!r}")
                if segment == SUFFIX_WILDCARD and index != len(segments) - 1:
                    raise ValueError(f"'**' must be the last segment: {pattern!r}")
                wildcard = segment
                regex_parts.append("[^/]+" if segment == SEGMENT_WILDCARD else ".+")
            elif "*" in segment:
                raise ValueError(f"wildcards must span a whole segment: {pattern!r}")
            else:
                regex_parts.append(re.escape(segment))

        regex_pattern = "^/" + "/".join(regex_parts) + "$"
        return cls(
            method=method,
            path=path,
            regex=re.compile(regex_pattern, re.IGNORECASE),
            wildcard=wildcard,
        )


class RouteTable:
    """Validated, immutable mapping of route patterns to prices.

    Raises RouteConfigurationError on construction if the table is empty,
    has colliding patterns, or contains an invalid pattern.
    """

    def __init__(self, specs: Iterable[PriceSpec]) -> None:
        self._specs: list[PriceSpec] = []
        self._exact: dict[tuple[str, str], PriceSpec] = {}
        self._wildcards: list[tuple[RoutePattern, PriceSpec]] = []

        errors: list[str] = []
        seen: dict[str, str] = {}
        for spec in specs:
            try:
                route = RoutePattern.parse(spec.pattern)
            except ValueError as e:
                errors.append(str(e))
                continue

            if route.key in seen:
                errors.append(f"{spec.pattern!r} collides with {seen[route.key]!r}")
                continue
            seen[route.key] = spec.pattern

            self._specs.append(spec)
            if route.is_exact:
                self._exact[(route.method, route.path.lower())] = spec
            else:
                self._wildcards.append((route, spec))

        if not self._specs and not errors:
            errors.append("route table is empty")
        if errors:
            raise RouteConfigurationError(errors)

    @classmethod
    def from_config(
        cls,
        routes: Mapping[str, PriceSpec | Mapping[str, Any] | str | int],
    ) -> RouteTable:
        """Build a table from a pattern -> price mapping.

        Values may be a PriceSpec, a bare amount, or a dict with ``amount``
        and optional ``asset``/``decimals``/``description`` (camelCase or
        snake_case keys).

        Raises:
            RouteConfigurationError: If any entry is invalid.
        """
        specs: list[PriceSpec] = []
        errors: list[str] = []
        for pattern, config in routes.items():
            try:
                specs.append(_parse_price(pattern, config))
            except ValueError as e:
                errors.append(f"{pattern!r}: {e}")
        if errors:
            raise RouteConfigurationError(errors)
        return cls(specs)

    def match(self, method: str, path: str) -> PriceSpec | None:
        """Find the price for a request, or None if it is free."""
        normalized = normalize_path(path)
        upper_method = method.upper()
        lowered = normalized.lower()

        spec = self._exact.get((upper_method, lowered))
        if spec is not None:
            return spec
        spec = self._exact.get((ANY_METHOD, lowered))
        if spec is not None:
            return spec

        for route, spec in self._wildcards:
            if route.matches(upper_method, normalized):
                return spec
        return None

    def __iter__(self) -> Iterator[PriceSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)


def _parse_price(pattern: str, config: PriceSpec | Mapping[str, Any] | str | int) -> PriceSpec:
    if isinstance(config, PriceSpec):
        if config.pattern != pattern:
            return config.model_copy(update={"pattern": pattern})
        return config
    if isinstance(config, (str, int)) and not isinstance(config, bool):
        return PriceSpec(pattern=pattern, amount=str(config))
    if not isinstance(config, Mapping):
        raise ValueError(f"invalid route config type {type(config).__name__}")

    amount = config.get("amount", config.get("price"))
    if amount is None:
        raise ValueError("route config requires an amount")

    asset = config.get("asset", config.get("token"))
    decimals = config.get("decimals")
    if isinstance(asset, Mapping):
        asset_spec = AssetSpec.model_validate(asset)
    elif asset is not None or decimals is not None:
        asset_spec = AssetSpec(
            **({"address": asset} if asset is not None else {}),
            **({"decimals": decimals} if decimals is not None else {}),
        )
    else:
        asset_spec = AssetSpec()

    return PriceSpec(
        pattern=pattern,
        amount=str(amount),
        asset=asset_spec,
        description=config.get("description"),
    )


def match(method: str, path: str, table: RouteTable) -> PriceSpec | None:
    """Find the price for ``method`` and ``path`` in ``table``."""
    return table.match(method, path)
