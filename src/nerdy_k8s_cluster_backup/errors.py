from __future__ import annotations

from typing import Iterable


class BackupConfigurationError(ValueError):
    """Raised when a backup cannot start because its configuration is malformed."""


class AggregateBackupError(RuntimeError):
    """Collects the non-fatal errors of a backup run, group or resource."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: list[BaseException] = list(errors)
        if not self.errors:
            raise ValueError("AggregateBackupError requires at least one error")
        super().__init__(_format_errors(self.errors))

    def flatten(self) -> AggregateBackupError:
        flattened: list[BaseException] = []
        pending = list(self.errors)
        while pending:
            error = pending.pop(0)
            if isinstance(error, AggregateBackupError):
                pending[:0] = error.errors
            else:
                flattened.append(error)
        return AggregateBackupError(flattened)

    def messages(self) -> list[str]:
        return [error_message(error) for error in self.flatten().errors]


class ItemBackupError(RuntimeError):
    """Raised when a single item fails to back up."""


def aggregate(errors: list[BaseException]) -> AggregateBackupError | None:
    if not errors:
        return None
    return AggregateBackupError(errors)


def error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__


def _format_errors(errors: list[BaseException]) -> str:
    if len(errors) == 1:
        return error_message(errors[0])
    return "[" + ", ".join(error_message(error) for error in errors) + "]"
