"""
zonebuild — package name to source component index

File: src/zonebuild/planning/components.py

Purpose
- Answer ``lookup(name)`` for the planner: which source components produce a package.
- Load the index from a YAML catalog or by scanning a build tree for ``build.sh`` scripts.

Catalog formats
- ``{components: [{name, path, packages?, build_depends?}, ...]}`` or a bare list of the same.
- ``{name: path, ...}`` where each component produces the package of the same name.

``build.sh`` scanning
- ``PKG=<name>`` declares the produced package; ``BUILD_DEPENDS_IPS=`` / ``+=`` declare the
  packages the build zone must have installed. Tokens containing shell expansions are ignored.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

import yaml

from zonebuild.manifest.fmri import normalize_fmri

if TYPE_CHECKING:
    from collections.abc import Iterable

BUILD_SCRIPT_NAME: Final[str] = "build.sh"

_PKG_RE = re.compile(r"^\s*PKG=(?P<value>\S+)\s*(?:#.*)?$")
_DEPENDS_RE = re.compile(r"^\s*BUILD_DEPENDS_IPS\+?=(?P<value>.*)$")


class ComponentCatalogError(ValueError):
    """Raised when a component catalog or build script cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class ComponentLocation:
    """A source component and the packages it produces."""

    name: str
    path: Path
    packages: tuple[str, ...]
    build_depends: tuple[str, ...] = ()


class ComponentLookup(Protocol):
    def lookup(self, name: str) -> list[ComponentLocation]: ...


class ComponentIndex:
    """In-memory ``package name -> [ComponentLocation]`` map."""

    def __init__(self, locations: Iterable[ComponentLocation] = ()) -> None:
        self._locations: list[ComponentLocation] = []
        self._by_package: dict[str, list[ComponentLocation]] = {}
        for location in locations:
            self.add(location)

    def add(self, location: ComponentLocation) -> None:
        self._locations.append(location)
        for package in location.packages:
            self._by_package.setdefault(normalize_fmri(package), []).append(location)

    def lookup(self, name: str) -> list[ComponentLocation]:
        return list(self._by_package.get(normalize_fmri(name), ()))

    @property
    def locations(self) -> tuple[ComponentLocation, ...]:
        return tuple(self._locations)

    def package_names(self) -> list[str]:
        return sorted(self._by_package)

    def __len__(self) -> int:
        return len(self._locations)

    @classmethod
    def from_catalog(cls, path: Path | str, *, root: Path | str | None = None) -> ComponentIndex:
        catalog = Path(path)
        base = Path(root) if root is not None else catalog.parent
        try:
            with catalog.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle)
        except OSError as exc:
            raise ComponentCatalogError(
                f"unable to read component catalog {catalog}: {exc}"
            ) from exc
        except yaml.YAMLError as exc:
            raise ComponentCatalogError(f"invalid YAML in {catalog}: {exc}") from exc

        return cls(_catalog_locations(payload, base=base, source=catalog.as_posix()))

    @classmethod
    def scan(cls, build_tree: Path | str) -> ComponentIndex:
        """Index every ``build.sh`` below ``build_tree`` that declares ``PKG=``."""

        root = Path(build_tree).resolve()
        if not root.is_dir():
            raise ComponentCatalogError(f"build tree is not a directory: {root}")

        index = cls()
        for script in sorted(root.rglob(BUILD_SCRIPT_NAME)):
            if not script.is_file():
                continue
            location = parse_build_script(script, root=root)
            if location is not None:
                index.add(location)
        return index


def parse_build_script(script: Path, *, root: Path) -> ComponentLocation | None:
    try:
        text = script.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise ComponentCatalogError(f"unable to read {script}: {exc}") from exc

    packages: list[str] = []
    depends: list[str] = []
    for line in text.splitlines():
        if match := _PKG_RE.match(line):
            packages.extend(_shell_words(match.group("value"), source=script))
        elif match := _DEPENDS_RE.match(line):
            depends.extend(_shell_words(match.group("value"), source=script))

    if not packages:
        return None

    directory = script.parent
    return ComponentLocation(
        name=directory.relative_to(root).as_posix() if directory != root else directory.name,
        path=directory,
        packages=tuple(packages),
        build_depends=tuple(dict.fromkeys(depends)),
    )


def _shell_words(value: str, *, source: Path) -> list[str]:
    try:
        words = shlex.split(value, comments=True)
    except ValueError as exc:
        raise ComponentCatalogError(f"{source}: unable to parse {value!r}: {exc}") from exc
    parts = [part for word in words for part in word.split()]
    return [part for part in parts if "$" not in part and "`" not in part]


def _catalog_locations(payload: object, *, base: Path, source: str) -> list[ComponentLocation]:
    if payload is None:
        return []

    if isinstance(payload, Mapping) and "components" in payload:
        records = payload["components"]
        if not isinstance(records, Sequence) or isinstance(records, (str, bytes)):
            raise ComponentCatalogError(f"{source}: 'components' must be a list")
        return [
            _coerce_record(record, base=base, path=f"{source}.components[{index}]")
            for index, record in enumerate(records)
        ]

    if isinstance(payload, Mapping):
        locations: list[ComponentLocation] = []
        for name, value in payload.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ComponentCatalogError(f"{source}: mapping entries must be name: path strings")
            locations.append(
                ComponentLocation(name=name, path=_resolve(base, value), packages=(name,))
            )
        return locations

    if isinstance(payload, Sequence) and not isinstance(payload, (str, bytes)):
        return [
            _coerce_record(record, base=base, path=f"{source}[{index}]")
            for index, record in enumerate(payload)
        ]

    raise ComponentCatalogError(f"{source} must be a list, a name: path mapping or 'components'")


def _coerce_record(record: object, *, base: Path, path: str) -> ComponentLocation:
    if not isinstance(record, Mapping):
        raise ComponentCatalogError(f"{path} must be an object")
    unknown = sorted(set(record) - {"name", "path", "packages", "build_depends"})
    if unknown:
        raise ComponentCatalogError(f"{path} has unknown keys: {', '.join(map(str, unknown))}")

    name = record.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ComponentCatalogError(f"{path}.name must be a non-empty string")
    raw_path = record.get("path")
    if not isinstance(raw_path, str) or not raw_path.strip():
        raise ComponentCatalogError(f"{path}.path must be a non-empty string")

    packages = _string_tuple(record.get("packages", [name]), f"{path}.packages")
    if not packages:
        raise ComponentCatalogError(f"{path}.packages must not be empty")

    return ComponentLocation(
        name=name,
        path=_resolve(base, raw_path),
        packages=packages,
        build_depends=_string_tuple(record.get("build_depends", []), f"{path}.build_depends"),
    )


def _string_tuple(value: object, path: str) -> tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ComponentCatalogError(f"{path} must be a list of strings")
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise ComponentCatalogError(f"{path}[{index}] must be a non-empty string")
        items.append(item.strip())
    return tuple(items)


def _resolve(base: Path, value: str) -> Path:
    candidate = Path(value).expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate.resolve()


__all__ = [
    "BUILD_SCRIPT_NAME",
    "ComponentCatalogError",
    "ComponentIndex",
    "ComponentLocation",
    "ComponentLookup",
    "parse_build_script",
]
