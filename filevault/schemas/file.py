from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from pydantic.config import ConfigDict


class FileMetadata(BaseModel):
    """Client supplied description of an upload. The declared size is advisory."""

    original_name: str = Field(min_length=1)
    mime_type: str = "application/octet-stream"
    size_bytes: int | None = Field(
        default=None,
        validation_alias=AliasChoices("size_bytes", "declared_size"),
    )
    client_encryption_algo: str | None = None


class FileResponse(BaseModel):
    id: str
    original_name: str
    mime_type: str
    size_bytes: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FileListResponse(BaseModel):
    files: list[FileResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
