from __future__ import annotations


class IntakeError(Exception):
    """Base class for errors surfaced to callers of the intake services."""

    code = "intake_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedMimeType(IntakeError):
    code = "unsupported_mime_type"

    def __init__(self, mime_type: str | None) -> None:
        super().__init__(f"Unsupported MIME type: {mime_type or '<missing>'}")
        self.mime_type = mime_type


class FileTooLarge(IntakeError):
    code = "file_too_large"


class FileNotFound(IntakeError):
    code = "file_not_found"


class AlreadyProcessing(IntakeError):
    code = "already_processing"

    def __init__(self, file_id: object) -> None:
        super().__init__(f"File {file_id} is already being parsed")
        self.file_id = file_id


class InvalidStatusTransition(IntakeError):
    code = "invalid_status_transition"


class LeaseLost(InvalidStatusTransition):
    """The processing lease was reclaimed by another worker or expired."""

    code = "lease_lost"


class SummaryNotAvailable(IntakeError):
    code = "summary_not_available"


class UnknownItemId(IntakeError):
    code = "unknown_item_id"

    def __init__(self, item_ids: list[str]) -> None:
        super().__init__("Items not found in parsed summary: " + ", ".join(item_ids))
        self.item_ids = item_ids
