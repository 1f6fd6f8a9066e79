"""Schemas for the sidecar relay pipeline.

Covers change notifications, resolved file pairs, filename metadata and the
per-pair audit record.
"""

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RelayStatus(StrEnum):
    """Outcome of relaying one resolved pair."""

    UPLOADED = "uploaded"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    ERROR = "error"


class ChangeNotification(BaseModel):
    """One filesystem event, carrying every path it touched."""

    model_config = ConfigDict(frozen=True)

    paths: tuple[Path, ...] = Field(min_length=1)
    event_type: str = Field(default="created", description="watchdog event type")


class FilePair(BaseModel):
    """An ``.mp3`` recording and its ``.txt`` transcript."""

    model_config = ConfigDict(frozen=True)

    primary_path: Path = Field(description="The .mp3 recording")
    sidecar_path: Path = Field(description="The .txt transcript")

    @model_validator(mode="after")
    def _same_stem_and_parent(self) -> "FilePair":
        if self.primary_path.parent != self.sidecar_path.parent:
            raise ValueError("pair members must share a parent directory")
        if self.primary_path.stem != self.sidecar_path.stem:
            raise ValueError("pair members must share a filename stem")
        return self

    @property
    def stem(self) -> str:
        return self.primary_path.stem

    @property
    def key(self) -> str:
        """Identity of the pair: parent directory plus shared stem."""
        return str(self.primary_path.parent / self.stem)


class ParsedMetadata(BaseModel):
    """Metadata encoded in a recording's filename."""

    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(pattern=r"^\d{8}_\d{6}$", description="YYYYMMDD_HHMMSS")
    talkgroup_id: str = Field(pattern=r"^\d+$")
    radio_id: str = Field(pattern=r"^\d+$")


class RelayEvent(BaseModel):
    """An audit record for one pair-level relay outcome."""

    timestamp: datetime
    pair_key: str = Field(description="Parent directory plus shared stem, see FilePair.key")
    stem: str
    primary_path: str
    sidecar_path: str
    status: RelayStatus
    talkgroup_id: str = ""
    radio_id: str = ""
    recorded_at: str = Field(default="", description="Timestamp parsed from the filename")
    http_status: int | None = None
    response_text: str = ""
    error_message: str = Field(default="", description="Error details if status is error")

    @field_validator("response_text")
    @classmethod
    def _truncate_response(cls, value: str) -> str:
        return value[:500]
