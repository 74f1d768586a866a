"""Errors raised while interpreting package manifests."""

from __future__ import annotations


class ManifestParseError(ValueError):
    """Raised for a malformed manifest line or an action that fails schema checks.

    A single bad line rejects the whole manifest; ``line`` and ``line_number`` point at it
    when known.
    """

    def __init__(
        self,
        message: str,
        *,
        line: str | None = None,
        line_number: int | None = None,
    ) -> None:
        self.message = message
        self.line = line
        self.line_number = line_number
        rendered = message
        if line_number is not None:
            rendered = f"line {line_number}: {rendered}"
        if line is not None:
            rendered = f"{rendered}: {line}"
        super().__init__(rendered)

    def at(self, *, line: str, line_number: int) -> ManifestParseError:
        """Return a copy of this error annotated with the offending line."""

        return ManifestParseError(self.message, line=line, line_number=line_number)


__all__ = ["ManifestParseError"]
