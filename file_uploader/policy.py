from dataclasses import dataclass

from file_uploader.config import DEFAULT_ALLOWED_MIME, Settings
from file_uploader.errors import FileTooLarge, UnsupportedFileType


@dataclass(frozen=True)
class UploadPolicy:
    allowed_types: frozenset[str] = frozenset(DEFAULT_ALLOWED_MIME)
    max_size: int = 10 * 1024 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadPolicy":
        return cls(allowed_types=settings.allowed_mime_types, max_size=settings.max_file_size)

    def check_type(self, content_type: str | None) -> None:
        if content_type not in self.allowed_types:
            raise UnsupportedFileType(content_type)

    def check_size(self, size: int) -> None:
        if size > self.max_size:
            raise FileTooLarge(size, self.max_size)

    def validate(self, content_type: str | None, size: int) -> None:
        self.check_type(content_type)
        self.check_size(size)
