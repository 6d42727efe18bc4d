"""Pydantic schemas: persisted snapshot format and interactive API request/response bodies."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


class SavedLogEntry(BaseModel):
    """Log entry as persisted: epoch-millisecond timestamp, level, message."""

    timestamp: int
    level: Literal["info", "success", "warn", "error"]
    message: str


class SavedState(BaseModel):
    """Snapshot on disk. Field names are camelCase on the wire; statuses are rebuilt from filePathsProcessed."""

    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(..., alias="projectName")
    processed_count: int = Field(0, alias="processedCount", ge=0)
    current_file_index: int = Field(0, alias="currentFileIndex", ge=0)
    diagrams: dict[str, str] = Field(default_factory=dict)
    logs: list[SavedLogEntry] = Field(default_factory=list)
    file_paths_processed: list[str] = Field(default_factory=list, alias="filePathsProcessed")


class CreateSessionRequest(BaseModel):
    """Request body for POST /session."""

    directory: str = Field(..., description="Project directory to scan")

    @field_validator("directory")
    @classmethod
    def directory_non_empty(cls, v: str) -> str:
        """Reject missing or empty directory so validation returns a clear error."""
        if not (v and isinstance(v, str) and v.strip()):
            raise ValueError("directory is required and must be a non-empty string")
        return v.strip()


class LoadSnapshotRequest(BaseModel):
    """Request body for POST /session/snapshot/load: a snapshot file path or the snapshot JSON itself."""

    path: str | None = Field(None, description="Path of a saved state file")
    snapshot: dict[str, Any] | None = Field(None, description="Saved state object (camelCase keys)")

    @model_validator(mode="after")
    def exactly_one_source(self) -> "LoadSnapshotRequest":
        if (self.path is None) == (self.snapshot is None):
            raise ValueError("provide exactly one of path or snapshot")
        if self.path is not None and not self.path.strip():
            raise ValueError("path must be a non-empty string")
        return self


class ConfigUpdateRequest(BaseModel):
    """Request body for PUT /session/config. Omitted fields keep their current value."""

    provider: Literal["google", "openai"] | None = None
    model_name: str | None = None
    base_url: str | None = None
    api_key: str | None = None
    batch_count: int | None = Field(None, ge=1)
    batch_size_kb: int | None = Field(None, ge=1)
    max_file_size_kb: int | None = Field(None, ge=1)

    def to_settings_update(self) -> dict[str, Any]:
        """Map the fields that were sent onto Settings field names."""
        sent = self.model_dump(exclude_none=True)
        names = {
            "provider": "LLM_PROVIDER",
            "model_name": "MODEL_NAME",
            "base_url": "OPENAI_BASE_URL",
            "api_key": "API_KEY",
            "batch_count": "BATCH_COUNT",
            "batch_size_kb": "BATCH_SIZE_KB",
            "max_file_size_kb": "MAX_FILE_SIZE_KB",
        }
        update = {names[k]: v for k, v in sent.items()}
        if "API_KEY" in update:
            update["API_KEY"] = SecretStr(update["API_KEY"])
        return update


class ConfigOut(BaseModel):
    """Effective provider and batching settings of the current session. The API key itself is never returned."""

    provider: str
    model_name: str
    base_url: str
    api_key_set: bool
    batch_count: int
    batch_size_kb: int
    max_file_size_kb: int


class FileRecordOut(BaseModel):
    index: int
    path: str
    size: int
    status: str
    error: str | None = None


class SessionStatus(BaseModel):
    """Progress view of the current session."""

    project_name: str
    total_count: int
    processed_count: int
    completed_count: int
    skipped_count: int
    failed_count: int
    current_file_index: int
    is_running: bool
    diagram_keys: list[str]
    files: list[FileRecordOut] = Field(default_factory=list)


class DiagramOut(BaseModel):
    key: str
    source: str


class DiagramListOut(BaseModel):
    keys: list[str]


class LogListOut(BaseModel):
    logs: list[SavedLogEntry]


class ActionResponse(BaseModel):
    status: Literal["ok"] = "ok"
    message: str


class ErrorResponse(BaseModel):
    """Error response body: status and message."""

    status: Literal["error"] = Field(..., description="Always 'error' for error responses")
    message: str = Field(..., description="Human-readable error message")
