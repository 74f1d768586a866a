"""Package identifiers (FMRIs) and the name normalization used for planner identity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

FMRI_SCHEME: Final[str] = "pkg:"


@dataclass(frozen=True, slots=True)
class PackageRef:
    """A package name with optional publisher and version.

    Written as ``pkg:/name@version`` or ``pkg://publisher/name@version``. Only
    :attr:`name` participates in planner identity.
    """

    name: str
    version: str | None = None
    publisher: str | None = None

    def __post_init__(self) -> None:
        name = self.name.strip().strip("/")
        if not name:
            raise ValueError("package name must not be empty")
        object.__setattr__(self, "name", name)
        if self.version is not None and not self.version.strip():
            object.__setattr__(self, "version", None)
        if self.publisher is not None and not self.publisher.strip():
            object.__setattr__(self, "publisher", None)

    @classmethod
    def parse(cls, text: str) -> PackageRef:
        """Parse any of ``name``, ``pkg:/name``, ``pkg://pub/name`` with optional ``@ver``."""

        if not isinstance(text, str):
            raise ValueError(f"package reference must be a string, got {type(text).__name__}")
        remainder = text.strip()
        publisher: str | None = None

        if remainder.startswith(FMRI_SCHEME):
            remainder = remainder[len(FMRI_SCHEME) :]
            if remainder.startswith("//"):
                publisher, sep, remainder = remainder[2:].partition("/")
                if not sep:
                    raise ValueError(f"package reference {text!r} has a publisher but no name")

        name, _, version = remainder.partition("@")
        return cls(name=name, version=version or None, publisher=publisher)

    def __str__(self) -> str:
        prefix = f"pkg://{self.publisher}/" if self.publisher else "pkg:/"
        if self.version:
            return f"{prefix}{self.name}@{self.version}"
        return f"{prefix}{self.name}"


def normalize_fmri(text: str) -> str:
    """Return the bare package name used as the planner's ``seen`` key.

    ``pkg:/foo@1.2,5.11-0.1``, ``pkg:/foo`` and ``foo`` all normalize to ``foo``.
    """

    return PackageRef.parse(text).name


__all__ = [
    "FMRI_SCHEME",
    "PackageRef",
    "normalize_fmri",
]
