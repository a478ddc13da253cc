"""Error taxonomy shared by the upload API and the local record store.

Each error carries the HTTP status it maps to; the API turns them into
``{"error": message}`` responses in a single exception handler.
"""


class FileServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FileServiceError):
    status_code = 400


class InvalidIdentifier(ValidationError):
    pass


class UnsupportedFileType(ValidationError):
    def __init__(self, content_type: str | None):
        super().__init__(f"Unsupported file type: {content_type or 'unknown'}")
        self.content_type = content_type


class FileTooLarge(ValidationError):
    def __init__(self, size: int, max_size: int):
        super().__init__(f"File too large: {format_bytes(size)} (max {format_bytes(max_size)})")
        self.size = size
        self.max_size = max_size


class NotFound(FileServiceError):
    status_code = 404

    def __init__(self, message: str = "File not found"):
        super().__init__(message)


class StorageUnavailable(FileServiceError):
    pass


class StreamingFailure(FileServiceError):
    pass


class SaveFailed(FileServiceError):
    pass


def format_bytes(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.1f} {units[index]}"
