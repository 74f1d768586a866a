"""
zonebuild — package root.

Builds a set of IPS packages and their transitive dependencies from source, one component at
a time, inside a single disposable build zone, publishing into a local package repository.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Submodules are imported explicitly by callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
