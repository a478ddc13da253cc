"""Local record store: keeps files with their metadata in an embedded SQLite database.

The store is opened once per session and passed to every operation. Each
create/read/delete runs in its own transaction, so a record is either fully
written or absent.
"""

import io
import logging
import mimetypes
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

from file_uploader.errors import NotFound, SaveFailed, StorageUnavailable, ValidationError
from file_uploader.models import FileRecord
from file_uploader.policy import UploadPolicy

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 200
DEFAULT_DOWNLOAD_NAME = "download"
UNSAFE_NAMES = ("", ".", "..")


@dataclass(frozen=True)
class StagedFile:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class LocalRecord:
    record: FileRecord
    content: bytes


@contextmanager
def _transient(content: bytes) -> Iterator[io.BytesIO]:
    handle = io.BytesIO(content)
    try:
        yield handle
    finally:
        handle.close()


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class LocalRecordStore:
    def __init__(self, db_path: str | Path, policy: UploadPolicy | None = None):
        self.db_path = Path(db_path)
        self.policy = policy or UploadPolicy()
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "LocalRecordStore":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> None:
        if self._conn is not None:
            return
        conn = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    filename TEXT NOT NULL,
                    contentType TEXT NOT NULL,
                    length INTEGER NOT NULL,
                    uploadDate TEXT NOT NULL,
                    content BLOB NOT NULL
                );
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS records_upload_date ON records (uploadDate)")
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            raise StorageUnavailable(f"Local storage not available: {exc}") from exc
        self._conn = conn
        logger.debug("Opened local store at %s", self.db_path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        if self._conn is None:
            raise StorageUnavailable("Local storage is not open")
        try:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Local storage error: {exc}") from exc

    def stage(self, content: bytes | None, filename: str, content_type: str | None) -> StagedFile:
        if content is None:
            raise ValidationError("No file selected")
        self.policy.validate(content_type, len(content))
        return StagedFile(filename=filename, content_type=content_type, content=content)

    def stage_path(self, path: str | Path) -> StagedFile:
        path = Path(path)
        if not path.is_file():
            raise ValidationError("No file selected")
        content_type, _ = mimetypes.guess_type(path.name)
        self.policy.check_type(content_type)
        self.policy.check_size(path.stat().st_size)
        return self.stage(path.read_bytes(), path.name, content_type)

    def persist(self, staged: StagedFile) -> FileRecord:
        record_id = uuid4().hex
        with self._transaction() as conn:
            upload_date = datetime.now(timezone.utc)
            latest = conn.execute("SELECT MAX(uploadDate) FROM records").fetchone()[0]
            if latest is not None:
                floor = datetime.fromisoformat(latest) + timedelta(microseconds=1)
                upload_date = max(upload_date, floor)
            conn.execute(
                """
                INSERT INTO records(id, filename, contentType, length, uploadDate, content)
                VALUES(?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    staged.filename,
                    staged.content_type,
                    staged.size,
                    format_timestamp(upload_date),
                    staged.content,
                ),
            )
        logger.info("Saved %s to local storage as %s", staged.filename, record_id)
        return FileRecord(
            id=record_id,
            filename=staged.filename,
            content_type=staged.content_type,
            length=staged.size,
            upload_date=upload_date,
        )

    def list_records(self, limit: int = DEFAULT_LIST_LIMIT) -> list[FileRecord]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, filename, contentType, length, uploadDate
                FROM records
                ORDER BY uploadDate DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [FileRecord(**dict(row)) for row in rows]

    def get(self, record_id: str) -> LocalRecord:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            raise NotFound()
        data = dict(row)
        content = data.pop("content")
        return LocalRecord(record=FileRecord(**data), content=bytes(content))

    @contextmanager
    def open_content(self, record_id: str) -> Iterator[io.BytesIO]:
        with _transient(self.get(record_id).content) as handle:
            yield handle

    def save_to(self, record_id: str, directory: str | Path) -> Path:
        local = self.get(record_id)
        name = Path(local.record.filename).name
        if name in UNSAFE_NAMES:
            name = DEFAULT_DOWNLOAD_NAME
        target = Path(directory) / name
        try:
            with _transient(local.content) as handle, target.open("wb") as out:
                out.write(handle.read())
        except OSError as exc:
            raise SaveFailed(f"Could not save {name}: {exc.strerror or exc}") from exc
        return target

    def delete(self, record_id: str) -> None:
        with self._transaction() as conn:
            deleted = conn.execute("DELETE FROM records WHERE id = ?", (record_id,)).rowcount
        if deleted:
            logger.info("Deleted %s from local storage", record_id)
