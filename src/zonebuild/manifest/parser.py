"""
zonebuild — IPS manifest parser

File: src/zonebuild/manifest/parser.py

Purpose
- Turn published package manifests (one action per line) into typed actions.

Grammar (per line)
- An alphabetic action-type token, then space-separated tokens that are either bare words
  (collected as free tokens) or ``key=value`` / ``key="quoted value"`` / ``key='quoted value'``.
- The opening quote must be matched by the same character; backslash escapes inside quoted
  values are rejected rather than guessed at.
- ``depend`` actions are strictly validated: ``fmri`` (one or more), ``type`` (exactly one,
  from the dependency-kind vocabulary), optional ``predicate`` list, optional single
  ``variant.opensolaris.zone``, nothing else. Every other action type is kept verbatim.
- A line ends either right after its action type or inside a value; a trailing bare word or
  space is an error.

Functional requirements
- A failure on any line rejects the whole manifest; there are no partial results.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from zonebuild.manifest.errors import ManifestParseError
from zonebuild.manifest.fmri import PackageRef
from zonebuild.manifest.vals import PropertyBag

DEPEND_ACTION: Final[str] = "depend"
ZONE_VARIANT_KEY: Final[str] = "variant.opensolaris.zone"
_KEY_PUNCTUATION: Final[frozenset[str]] = frozenset(".-_/@")
_QUOTES: Final[frozenset[str]] = frozenset({'"', "'"})


class DependencyKind(StrEnum):
    """The ``type=`` vocabulary of a ``depend`` action."""

    INCORPORATE = "incorporate"
    REQUIRE = "require"
    REQUIRE_ANY = "require-any"
    GROUP = "group"
    GROUP_ANY = "group-any"
    OPTIONAL = "optional"
    CONDITIONAL = "conditional"

    @classmethod
    def parse(cls, value: str) -> DependencyKind:
        try:
            return cls(value)
        except ValueError:
            raise ManifestParseError(f"unknown depend type {value!r}") from None


@dataclass(frozen=True, slots=True)
class DependAction:
    fmris: tuple[str, ...]
    kind: DependencyKind
    predicates: tuple[str, ...] = ()
    variant_zone: str | None = None


@dataclass(frozen=True, slots=True)
class UnknownAction:
    """An action the planner does not interpret, captured without validation."""

    action_type: str
    free_tokens: tuple[str, ...]
    properties: PropertyBag


ManifestAction = DependAction | UnknownAction


class _State(enum.Enum):
    REST = enum.auto()
    TYPE = enum.auto()
    KEY = enum.auto()
    VALUE = enum.auto()
    VALUE_QUOTED = enum.auto()
    VALUE_QUOTED_SPACE = enum.auto()
    VALUE_UNQUOTED = enum.auto()


def parse_manifest(text: str) -> list[ManifestAction]:
    """Parse a complete manifest. Blank lines are ignored."""

    actions: list[ManifestAction] = []
    for index, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            actions.append(parse_action_line(line))
        except ManifestParseError as exc:
            raise exc.at(line=line, line_number=index) from None
    return actions


def parse_action_line(line: str) -> ManifestAction:
    action_type, free_tokens, properties = _tokenize(line)

    if action_type == DEPEND_ACTION:
        return _interpret_depend(properties)

    return UnknownAction(
        action_type=action_type,
        free_tokens=tuple(free_tokens),
        properties=properties,
    )


def depend_actions(actions: list[ManifestAction]) -> list[DependAction]:
    return [action for action in actions if isinstance(action, DependAction)]


def _interpret_depend(properties: PropertyBag) -> DependAction:
    fmris = properties.require_list("fmri")
    for fmri in fmris:
        try:
            PackageRef.parse(fmri)
        except ValueError as exc:
            raise ManifestParseError(f"invalid fmri {fmri!r}: {exc}") from None
    kind = DependencyKind.parse(properties.require_single("type"))
    predicates = properties.maybe_list("predicate")
    variant_zone = properties.maybe_single(ZONE_VARIANT_KEY)

    properties.assert_consumed()

    return DependAction(
        fmris=tuple(fmris),
        kind=kind,
        predicates=tuple(predicates),
        variant_zone=variant_zone,
    )


def _tokenize(line: str) -> tuple[str, list[str], PropertyBag]:
    state = _State.REST
    action_type: list[str] = []
    key: list[str] = []
    value: list[str] = []
    free_tokens: list[str] = []
    properties = PropertyBag()
    quote = '"'

    for char in line:
        if state is _State.REST:
            if not char.isascii() or not char.isalpha():
                raise ManifestParseError("action must start with an alphabetic type")
            action_type.append(char)
            state = _State.TYPE

        elif state is _State.TYPE:
            if char.isascii() and char.isalpha():
                action_type.append(char)
            elif char == " ":
                state = _State.KEY
            else:
                raise ManifestParseError(f"invalid character {char!r} in action type")

        elif state is _State.KEY:
            if (char.isascii() and char.isalnum()) or char in _KEY_PUNCTUATION:
                key.append(char)
            elif char == " ":
                if key:
                    free_tokens.append("".join(key))
                    key.clear()
            elif char == "=":
                if not key:
                    raise ManifestParseError("property value without a key")
                state = _State.VALUE
            else:
                raise ManifestParseError(f"invalid character {char!r} in key {''.join(key)!r}")

        elif state is _State.VALUE:
            value.clear()
            if char in _QUOTES:
                # The closing quote must match the opening one.
                quote = char
                state = _State.VALUE_QUOTED
            elif char == " ":
                raise ManifestParseError(f"missing value for {''.join(key)!r}")
            else:
                value.append(char)
                state = _State.VALUE_UNQUOTED

        elif state is _State.VALUE_QUOTED:
            if char == "\\":
                raise ManifestParseError("backslash escapes in quoted values are not supported")
            if char == quote:
                state = _State.VALUE_QUOTED_SPACE
            else:
                value.append(char)

        elif state is _State.VALUE_QUOTED_SPACE:
            if char != " ":
                raise ManifestParseError(
                    f"expected a space after quoted value for {''.join(key)!r}"
                )
            properties.insert("".join(key), "".join(value))
            key.clear()
            state = _State.KEY

        elif state is _State.VALUE_UNQUOTED:
            if char in _QUOTES:
                raise ManifestParseError(f"errant quote in value for {''.join(key)!r}")
            if char == " ":
                properties.insert("".join(key), "".join(value))
                key.clear()
                state = _State.KEY
            else:
                value.append(char)

    if state in (_State.VALUE_QUOTED_SPACE, _State.VALUE_UNQUOTED):
        properties.insert("".join(key), "".join(value))
    elif state is not _State.TYPE:
        raise ManifestParseError(f"line ends inside {state.name.lower().replace('_', ' ')}")

    return "".join(action_type), free_tokens, properties


__all__ = [
    "DEPEND_ACTION",
    "DependAction",
    "DependencyKind",
    "ManifestAction",
    "UnknownAction",
    "ZONE_VARIANT_KEY",
    "depend_actions",
    "parse_action_line",
    "parse_manifest",
]
