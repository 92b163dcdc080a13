"""
Manifest models

A manifest is the JSON array stored in the cache under "zip:<ref>".
Field names follow the producer's casing (FileName, Folder, Path, URL, ...).
"""
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from typing import List, Optional


class FileDescriptor(BaseModel):
    """One file to put in the archive"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file_name: str = Field(alias="FileName")
    folder: str = Field(default="", alias="Folder")
    local_path: str = Field(default="", alias="Path")
    remote_url: str = Field(default="", alias="URL")

    # Passthrough bookkeeping, never interpreted here.
    # The producer sends the ids as JSON strings ("123"); lax mode coerces them.
    file_id: Optional[int] = Field(default=None, alias="FileId")
    project_id: Optional[int] = Field(default=None, alias="ProjectId")
    project_name: Optional[str] = Field(default=None, alias="ProjectName")

    @field_validator("folder", "local_path", "remote_url", mode="before")
    @classmethod
    def null_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("file_id", "project_id", mode="before")
    @classmethod
    def blank_id_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def source_location(self) -> str:
        """Where the bytes come from, for log lines"""
        return self.local_path or self.remote_url


Manifest = List[FileDescriptor]

manifest_adapter: TypeAdapter[Manifest] = TypeAdapter(Manifest)
