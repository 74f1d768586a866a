"""Ordered multi-map of action properties with consumption tracking.

Each typed accessor marks its key as consumed. Once an action has been fully interpreted,
:meth:`PropertyBag.assert_consumed` fails if any present key was never read, which keeps the
``depend`` schema closed without a separate schema language.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from zonebuild.manifest.errors import ManifestParseError

if TYPE_CHECKING:
    from collections.abc import Iterator

# Facets only select optional content; they never change build dependencies.
IGNORED_KEY_PREFIX: Final[str] = "facet."


class PropertyBag:
    """Ordered ``key=value`` pairs from one manifest action."""

    __slots__ = ("_pairs", "_unconsumed")

    def __init__(self) -> None:
        self._pairs: list[tuple[str, str]] = []
        self._unconsumed: set[str] = set()

    def insert(self, key: str, value: str) -> None:
        if key.startswith(IGNORED_KEY_PREFIX):
            return
        self._pairs.append((key, value))
        self._unconsumed.add(key)

    def maybe_single(self, key: str) -> str | None:
        found: str | None = None
        for name, value in self._pairs:
            if name != key:
                continue
            if found is not None:
                raise ManifestParseError(f"more than one value for {key}, wanted a single value")
            found = value
        self._unconsumed.discard(key)
        return found

    def require_single(self, key: str) -> str:
        value = self.maybe_single(key)
        if value is None:
            raise ManifestParseError(f"no values for {key} found")
        return value

    def maybe_list(self, key: str) -> list[str]:
        values = [value for name, value in self._pairs if name == key]
        self._unconsumed.discard(key)
        return values

    def require_list(self, key: str) -> list[str]:
        values = self.maybe_list(key)
        if not values:
            raise ManifestParseError(f"wanted at least one value for {key}, found none")
        return values

    def assert_consumed(self) -> None:
        if self._unconsumed:
            leftover = ", ".join(sorted(self._unconsumed))
            raise ManifestParseError(f"some properties present but not consumed: {leftover}")

    @property
    def unconsumed(self) -> frozenset[str]:
        return frozenset(self._unconsumed)

    def items(self) -> tuple[tuple[str, str], ...]:
        return tuple(self._pairs)

    def keys(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for name, _ in self._pairs:
            seen.setdefault(name, None)
        return tuple(seen)

    def get_all(self, key: str) -> tuple[str, ...]:
        """Read values without marking ``key`` consumed."""

        return tuple(value for name, value in self._pairs if name == key)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, key: object) -> bool:
        return any(name == key for name, _ in self._pairs)

    def __repr__(self) -> str:
        return f"PropertyBag({self._pairs!r})"


__all__ = ["IGNORED_KEY_PREFIX", "PropertyBag"]
