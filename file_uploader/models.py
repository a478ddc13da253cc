from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FileRecord(BaseModel):
    """Metadata-only view of a stored file."""

    id: str
    filename: str
    content_type: str | None = Field(default=None, alias="contentType")
    length: int
    upload_date: datetime = Field(alias="uploadDate")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "6650f0c2a1b2c3d4e5f60718",
                "filename": "note.txt",
                "contentType": "text/plain",
                "length": 1024,
                "uploadDate": "2024-05-24T10:00:00Z",
            }
        },
    )


class DeleteResponse(BaseModel):
    deleted: bool
    id: str


class HealthResponse(BaseModel):
    ok: bool
