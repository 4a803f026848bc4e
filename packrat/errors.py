"""Error taxonomy for the acquisition pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from packrat.grab.types import DownloadInfo


class PackratError(Exception):
    """Base class for all pipeline errors."""


class CapabilityMismatch(PackratError):
    """An index cannot answer the criteria; raised before any request is made."""

    def __init__(self, index: str, outcome: str, reason: str) -> None:
        super().__init__(f"{index}: {reason}")
        self.index = index
        self.outcome = outcome
        self.reason = reason


class DefinitionError(PackratError):
    """An index definition file is missing or invalid."""


class RequestCompilationError(PackratError):
    """A definition template could not be expanded. Configuration bug, never retried."""


class IndexNetworkError(PackratError):
    """A request to an index failed at the transport level or with a non-2xx status."""

    def __init__(self, index: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{index}: {message}")
        self.index = index
        self.status = status


class ResponseParseError(PackratError):
    """An index response body could not be turned into results."""


class DuplicateDownloadError(PackratError):
    """A download client already holds this payload; ``existing`` describes the queued item."""

    def __init__(self, existing: DownloadInfo, message: str = "Download already exists in client") -> None:
        super().__init__(message)
        self.existing = existing


class PayloadResolutionError(PackratError):
    """A candidate could not be turned into a magnet, torrent file or NZB."""


class InvalidNzbError(PayloadResolutionError):
    """A fetched NZB failed structural validation."""


class TransactionConflict(PackratError):
    """A concurrent writer inserted the same relative path first."""

    def __init__(self, relative_path: str, existing_id: int) -> None:
        super().__init__(f"File record already exists for {relative_path}")
        self.relative_path = relative_path
        self.existing_id = existing_id


class TransactionFailure(PackratError):
    """A multi-row library write failed and was rolled back."""


class TargetNotFoundError(PackratError):
    """The movie, series, episode or root folder a grab points at does not exist."""


class DownloadClientError(PackratError):
    """A download client answered with something a queue item cannot be built from."""
