"""
Error taxonomy for the retrieval and conversation pipeline.

Every error carries a stable code and the HTTP status the API layer
renders it with.
"""


class PKCError(Exception):
    """Base class for all pipeline errors."""

    code = "E_INTERNAL"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PKCError):
    """Malformed input, rejected before any side effect."""

    code = "E_INVALID_REQUEST"
    status_code = 400


class NotFoundError(PKCError):
    """Thread or file missing or not owned by the caller."""

    code = "E_NOT_FOUND"
    status_code = 404


class DuplicateError(PKCError):
    """Identical content already stored for this owner.

    Handled inside ingestion as a no-op success; never reaches a client.
    """

    code = "E_DUPLICATE"
    status_code = 409

    def __init__(self, message: str, existing_id: str = None):
        super().__init__(message)
        self.existing_id = existing_id


class StorageError(PKCError):
    """Persistence or blob-storage failure."""

    code = "E_STORAGE_ERROR"
    status_code = 500


class ModelError(PKCError):
    """Completion or embedding gateway failure."""

    code = "E_MODEL_ERROR"
    status_code = 502

    def __init__(self, message: str, provider: str = None):
        super().__init__(message)
        self.provider = provider
