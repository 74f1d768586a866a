"""Small shared helpers: atomic file writes and the subprocess runner seam."""

from zonebuild.utils.fs import atomic_write, read_text_if_exists
from zonebuild.utils.process import CommandResult, CommandRunner, SubprocessCommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessCommandRunner",
    "atomic_write",
    "read_text_if_exists",
]
