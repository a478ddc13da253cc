from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from file_uploader.config import get_settings
from file_uploader.errors import NotFound, StorageUnavailable
from file_uploader.models import FileRecord
from file_uploader.storage import FileStorage, StoredFile


class MemoryStorage(FileStorage):
    """In-process stand-in for the GridFS bucket."""

    chunk_size = 255 * 1024

    def __init__(self):
        self.files: dict[ObjectId, dict] = {}
        self.connected = False
        self.fail = False
        self.fail_connect = False
        self.calls: list[str] = []
        self.last_limit: int | None = None
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def connect(self) -> None:
        if self.fail_connect:
            raise StorageUnavailable("MongoDB not connected")
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if not self.connected:
            raise StorageUnavailable("MongoDB not connected")
        if self.fail:
            raise StorageUnavailable("Storage unavailable")

    def _record(self, doc: dict) -> FileRecord:
        return FileRecord(
            id=str(doc["_id"]),
            filename=doc["filename"],
            content_type=doc["contentType"],
            length=doc["length"],
            upload_date=doc["uploadDate"],
        )

    def put(self, content: bytes, *, filename: str, content_type: str, metadata: dict) -> FileRecord:
        self._check("put")
        self._clock += timedelta(seconds=1)
        file_id = ObjectId()
        self.files[file_id] = {
            "_id": file_id,
            "filename": filename,
            "contentType": content_type,
            "length": len(content),
            "uploadDate": self._clock,
            "metadata": metadata,
            "content": content,
        }
        return self._record(self.files[file_id])

    def list_files(self, limit: int) -> list[FileRecord]:
        self._check("list_files")
        self.last_limit = limit
        docs = sorted(self.files.values(), key=lambda doc: (doc["uploadDate"], doc["_id"]), reverse=True)
        return [self._record(doc) for doc in docs[:limit]]

    def open(self, file_id: ObjectId) -> StoredFile:
        self._check("open")
        doc = self.files.get(file_id)
        if doc is None:
            raise NotFound()
        content = doc["content"]
        chunks = iter([content[i : i + self.chunk_size] for i in range(0, len(content), self.chunk_size)])
        return StoredFile(record=self._record(doc), chunks=chunks)

    def delete(self, file_id: ObjectId) -> None:
        self._check("delete")
        if self.files.pop(file_id, None) is None:
            raise NotFound()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
