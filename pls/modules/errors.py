# pls/modules/errors.py
"""
Error taxonomy shared by every pls module.

Single-package operations raise the first error they hit. Batch operations
(update, bundle) collect per-package errors and raise PartialFailure once at
the end, and only when something actually failed.
"""

from __future__ import annotations

from typing import List, Optional


class PlsError(Exception):
    """Base class for every failure reported by pls."""


class NotFound(PlsError):
    """Identifier, manifest, binary, store entry or bundle is absent."""


class BrokenArchive(PlsError):
    """Archive or foreign container is corrupt or cannot be unpacked."""


class MalformedIndex(PlsError):
    """Repository catalog could not be parsed or fails its schema."""


class PlsIOError(PlsError):
    """Filesystem read/write/copy/remove failure."""


class BuildFailure(PlsError):
    """External build tool is missing or exited non-zero."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class NetworkError(PlsError):
    """Fetch or download failure."""


class AlreadyInstalled(PlsError):
    """Informational: the package is already installed and will be overwritten.

    Never raised by the engine; reinstalling is always permitted. Instances
    are built only to render the notice.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is already installed, reinstalling...")


class PartialFailure(PlsError):
    """Aggregate outcome of a batch where at least one package failed."""

    def __init__(self, result):
        self.result = result
        failed: List[str] = list(result.failed)
        super().__init__(
            "%d succeeded, %d failed: %s" % (len(result.succeeded), len(failed), ", ".join(failed))
        )

    @property
    def failed(self) -> List[str]:
        return list(self.result.failed)

    @property
    def succeeded(self) -> List[str]:
        return list(self.result.succeeded)
