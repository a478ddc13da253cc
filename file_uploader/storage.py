import abc
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import gridfs
from bson import ObjectId
from gridfs.errors import NoFile
from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from file_uploader.errors import InvalidIdentifier, NotFound, StorageUnavailable, StreamingFailure
from file_uploader.models import FileRecord

logger = logging.getLogger(__name__)


def parse_object_id(value: str) -> ObjectId:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidIdentifier("id must be a valid MongoDB ObjectId")
    return ObjectId(value)


@dataclass
class StoredFile:
    record: FileRecord
    chunks: Iterator[bytes]


class FileStorage(abc.ABC):
    """Chunked object storage holding uploaded files.

    Identifiers passed in are already validated with ``parse_object_id``.
    """

    @abc.abstractmethod
    def connect(self) -> None: ...

    @abc.abstractmethod
    def close(self) -> None: ...

    @abc.abstractmethod
    def put(self, content: bytes, *, filename: str, content_type: str, metadata: dict) -> FileRecord: ...

    @abc.abstractmethod
    def list_files(self, limit: int) -> list[FileRecord]: ...

    @abc.abstractmethod
    def open(self, file_id: ObjectId) -> StoredFile: ...

    @abc.abstractmethod
    def delete(self, file_id: ObjectId) -> None: ...


def record_from_document(doc: dict) -> FileRecord:
    return FileRecord(
        id=str(doc["_id"]),
        filename=doc.get("filename") or "",
        content_type=doc.get("contentType"),
        length=doc.get("length", 0),
        upload_date=doc["uploadDate"],
    )


class GridFSStorage(FileStorage):
    def __init__(self, uri: str, db_name: str, bucket_name: str = "uploads"):
        self.uri = uri
        self.db_name = db_name
        self.bucket_name = bucket_name
        self._client: MongoClient | None = None
        self._fs: gridfs.GridFS | None = None
        self._bucket: gridfs.GridFSBucket | None = None
        self._files = None

    def connect(self) -> None:
        if self._client is not None:
            return
        try:
            client = MongoClient(self.uri, maxPoolSize=10, serverSelectionTimeoutMS=5000, tz_aware=True)
            client.admin.command("ping")
            db = client[self.db_name]
            files = db[f"{self.bucket_name}.files"]
            files.create_index([("uploadDate", DESCENDING)])
        except PyMongoError as exc:
            logger.error("Failed to connect to MongoDB: %s", exc)
            raise StorageUnavailable("MongoDB not connected") from exc

        self._client = client
        self._fs = gridfs.GridFS(db, collection=self.bucket_name)
        self._bucket = gridfs.GridFSBucket(db, bucket_name=self.bucket_name)
        self._files = files
        logger.info("Connected to MongoDB database %s, bucket %s", self.db_name, self.bucket_name)

    def close(self) -> None:
        try:
            if self._client is not None:
                self._client.close()
                logger.info("MongoDB connection closed")
        finally:
            self._client = None
            self._fs = None
            self._bucket = None
            self._files = None

    @contextmanager
    def _guard(self):
        if self._client is None:
            logger.error("MongoDB operation attempted without a connection")
            raise StorageUnavailable("MongoDB not connected")
        try:
            yield
        except PyMongoError as exc:
            logger.error("MongoDB operation failed: %s", exc)
            raise StorageUnavailable("Storage unavailable") from exc

    def put(self, content: bytes, *, filename: str, content_type: str, metadata: dict) -> FileRecord:
        with self._guard():
            file_id = self._fs.put(content, filename=filename, contentType=content_type, metadata=metadata)

        try:
            doc = self._files.find_one({"_id": file_id})
        except PyMongoError as exc:
            logger.warning("Could not re-read metadata for %s: %s", file_id, exc)
            doc = None
        if doc is None:
            logger.warning("Echoing declared metadata for %s", file_id)
            return FileRecord(
                id=str(file_id),
                filename=filename,
                content_type=content_type,
                length=len(content),
                upload_date=datetime.now(timezone.utc),
            )
        return record_from_document(doc)

    def list_files(self, limit: int) -> list[FileRecord]:
        with self._guard():
            cursor = self._files.find(
                {},
                sort=[("uploadDate", DESCENDING), ("_id", DESCENDING)],
                limit=limit,
            )
            return [record_from_document(doc) for doc in cursor]

    def open(self, file_id: ObjectId) -> StoredFile:
        with self._guard():
            doc = self._files.find_one({"_id": file_id})
            if doc is None:
                raise NotFound()
            try:
                grid_out = self._bucket.open_download_stream(file_id)
            except NoFile as exc:
                raise NotFound() from exc
        return StoredFile(record=record_from_document(doc), chunks=self._iter_chunks(grid_out))

    def _iter_chunks(self, grid_out) -> Iterator[bytes]:
        try:
            while True:
                chunk = grid_out.readchunk()
                if not chunk:
                    break
                yield chunk
        except PyMongoError as exc:
            logger.error("Streaming %s failed: %s", grid_out._id, exc)
            raise StreamingFailure("Failed while streaming file content") from exc
        finally:
            grid_out.close()

    def delete(self, file_id: ObjectId) -> None:
        with self._guard():
            try:
                self._bucket.delete(file_id)
            except NoFile as exc:
                raise NotFound() from exc
