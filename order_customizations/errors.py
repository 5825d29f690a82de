from __future__ import annotations


class CustomizationError(RuntimeError):
    status_code = 500

    def __init__(self, *, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class CustomizationNotFoundError(CustomizationError):
    status_code = 404


class InvalidCustomizationError(CustomizationError):
    status_code = 400


class AssetTransferError(CustomizationError):
    """Disk or network failure while moving an asset; aborts the current finalization."""

    status_code = 502


class DurableStorageError(AssetTransferError):
    pass
