"""Client for the local IPS package repository that builds publish into."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

from zonebuild.manifest.fmri import normalize_fmri
from zonebuild.planning.errors import RepositoryError
from zonebuild.utils.process import SubprocessCommandRunner

if TYPE_CHECKING:
    from zonebuild.utils.process import CommandResult, CommandRunner

PKGREPO: Final[str] = "/usr/bin/pkgrepo"
PKG: Final[str] = "/usr/bin/pkg"
# pkgrepo list exits 1 when no package matched the pattern.
_NO_MATCH: Final[int] = 1

logger = logging.getLogger(__name__)


class PackageRepository(Protocol):
    def has_build(self, fmri: str) -> bool: ...

    def fetch_manifest(self, fmri: str) -> str: ...


class PkgRepoRepository:
    """:class:`PackageRepository` backed by ``pkgrepo`` and ``pkg`` on a file repository."""

    def __init__(
        self,
        path: Path | str,
        publisher: str,
        *,
        runner: CommandRunner | None = None,
    ) -> None:
        if not publisher.strip():
            raise ValueError("publisher must not be empty")
        self._path = Path(path).resolve()
        self._publisher = publisher
        self._runner = runner or SubprocessCommandRunner()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def publisher(self) -> str:
        return self._publisher

    def exists(self) -> bool:
        return (self._path / "pkg5.repository").is_file()

    def ensure(self) -> bool:
        """Create the repository and its publisher when missing. Returns ``True`` if created."""

        if self.exists():
            return False
        self._path.mkdir(parents=True, exist_ok=True)
        self._check("pkgrepo create", self._runner.run([PKGREPO, "create", str(self._path)]))
        self._check(
            "pkgrepo add-publisher",
            self._runner.run(
                [PKGREPO, "add-publisher", "-s", str(self._path), self._publisher]
            ),
        )
        logger.info("created package repository %s for %s", self._path, self._publisher)
        return True

    def has_build(self, fmri: str) -> bool:
        name = normalize_fmri(fmri)
        # A bare name is a pattern that also matches longer names ending in it.
        command = [PKGREPO, "list", "-s", str(self._path), "-p", self._publisher, "-H"]
        result = self._runner.run([*command, self._anchored(name)])
        if result.returncode == 0:
            return bool(result.stdout.strip())
        if result.returncode == _NO_MATCH:
            return False
        raise RepositoryError(f"pkgrepo list {name} failed: {result.describe()}")

    def fetch_manifest(self, fmri: str) -> str:
        name = normalize_fmri(fmri)
        result = self._runner.run(
            [PKG, "contents", "-m", "-g", str(self._path), self._anchored(name)]
        )
        self._check(f"pkg contents {name}", result)
        return result.stdout

    def _anchored(self, name: str) -> str:
        return f"pkg://{self._publisher}/{name}"

    @staticmethod
    def _check(action: str, result: CommandResult) -> None:
        if not result.succeeded:
            raise RepositoryError(f"{action} failed: {result.describe()}")


__all__ = [
    "PKG",
    "PKGREPO",
    "PackageRepository",
    "PkgRepoRepository",
]
