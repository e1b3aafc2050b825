"""Error taxonomy shared by the storage, entry and import layers."""


class TrackerError(Exception):
    """Base class for recoverable tracker failures reported to the client."""

    message = "Something went wrong"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationFailure(TrackerError):
    message = "No entries logged. Pick a type (and a zone for Class/Study) for at least one student."


class StorageUnavailable(TrackerError):
    message = "Storage is unavailable. Your data could not be saved."


# Name used by callers that only care about "the store failed"
StorageError = StorageUnavailable


class ImportFormatError(TrackerError):
    message = "File is not a recognized snapshot or entry list"


class RecordNotFound(TrackerError):
    message = "Record not found"
