import logging
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from file_uploader.config import Settings, get_settings
from file_uploader.errors import FileServiceError, FileTooLarge, ValidationError
from file_uploader.models import DeleteResponse, FileRecord, HealthResponse
from file_uploader.policy import UploadPolicy
from file_uploader.storage import FileStorage, GridFSStorage, parse_object_id

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024


def read_upload(source: UploadFile, policy: UploadPolicy) -> bytes:
    buffer = bytearray()
    while True:
        chunk = source.file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > policy.max_size:
            raise FileTooLarge(len(buffer), policy.max_size)
    return bytes(buffer)


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def create_app(settings: Settings | None = None, storage: FileStorage | None = None) -> FastAPI:
    settings = settings or get_settings()
    if storage is None:
        storage = GridFSStorage(settings.mongodb_uri, settings.db_name, settings.bucket_name)
    policy = UploadPolicy.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        storage.connect()
        try:
            yield
        finally:
            storage.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage

    def error_response(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": message})

    @app.exception_handler(FileServiceError)
    async def file_service_exception_handler(_: Request, exc: FileServiceError):
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        missing_fields = [
            ".".join(str(item) for item in error["loc"] if item != "body")
            for error in exc.errors()
            if error.get("type") == "missing"
        ]
        if missing_fields:
            message = f"missing parameters: {', '.join(missing_fields)}"
        else:
            message = "Invalid request parameters"
        return error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_: Request, exc: StarletteHTTPException):
        message = str(exc.detail) if exc.detail else "request failed"
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_: Request, exc: Exception):
        logger.exception("Unhandled error", exc_info=exc)
        return error_response(500, "Internal Server Error")

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(ok=True)

    @app.post("/files", response_model=FileRecord, status_code=201)
    def upload_file(request: Request, file: UploadFile | None = File(None)):
        if file is None or not file.filename:
            raise ValidationError('No file uploaded. Use field name "file".')

        policy.check_type(file.content_type)
        if file.size is not None:
            policy.check_size(file.size)
        content = read_upload(file, policy)
        caller = request.client.host if request.client else "unknown"

        record = storage.put(
            content,
            filename=file.filename,
            content_type=file.content_type,
            metadata={"size": len(content), "uploadedBy": caller},
        )
        logger.info("Stored %s (%s, %d bytes) as %s", record.filename, record.content_type, record.length, record.id)
        return record

    @app.get("/files", response_model=list[FileRecord])
    def list_files(limit: int | None = Query(None, ge=1)):
        limit = min(limit or settings.list_default_limit, settings.list_max_limit)
        return storage.list_files(limit)

    @app.get("/files/{file_id}")
    def download_file(file_id: str):
        stored = storage.open(parse_object_id(file_id))
        return StreamingResponse(
            stored.chunks,
            media_type=stored.record.content_type or "application/octet-stream",
            headers={"Content-Disposition": content_disposition(stored.record.filename)},
        )

    @app.delete("/files/{file_id}", response_model=DeleteResponse)
    def delete_file(file_id: str):
        oid = parse_object_id(file_id)
        storage.delete(oid)
        logger.info("Deleted %s", oid)
        return DeleteResponse(deleted=True, id=str(oid))

    return app


app = create_app()
