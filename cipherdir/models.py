from datetime import datetime, timezone
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List

DEFAULT_MEDIA_TYPE = "application/octet-stream"
MAX_FILE_SIZE = 1 << 35  # 32 GiB
MAX_MEMORY_COST = 4 * 1024 * 1024  # KiB, 4 GiB


class KdfParams(BaseModel):
    """Argon2id cost parameters; recorded in every envelope so `open` re-derives identically."""
    model_config = ConfigDict(frozen=True)

    time_cost: int = Field(3, ge=1, le=64)
    memory_cost: int = Field(256 * 1024, ge=8, le=MAX_MEMORY_COST)  # KiB
    parallelism: int = Field(2, ge=1, le=16)

    @model_validator(mode="after")
    def check_memory_per_lane(self):
        """Argon2 needs at least 8 KiB of memory per lane."""
        if self.memory_cost < 8 * self.parallelism:
            raise ValueError("memory_cost must be at least 8 KiB per parallel lane")
        return self


class EnvelopeRecord(BaseModel):
    """On-disk JSON shape of a sealed envelope; binary fields are base64."""
    version: int = 1
    kdf: str = "argon2id"
    kdf_params: KdfParams
    aead: str = "xchacha20poly1305"
    salt: str
    iv: str
    data: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class IndexEntry(BaseModel):
    """Single entry in the encrypted index describing a stored blob."""
    model_config = ConfigDict(frozen=True)

    name: str
    media_type: str = DEFAULT_MEDIA_TYPE
    created: AwareDatetime = Field(default_factory=utcnow)
    content_id: str
    size: int = 0

    @field_validator("media_type")
    @classmethod
    def default_media_type(cls, v: str):
        """Empty or blank media types fall back to the generic binary type."""
        v = (v or "").strip()
        return v or DEFAULT_MEDIA_TYPE

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: int):
        """Ensure stored plaintext sizes remain within supported limits."""
        if v < 0:
            raise ValueError("size must be non-negative")
        if v > MAX_FILE_SIZE:
            raise ValueError("size exceeds supported limit")
        return v


class IndexFile(BaseModel):
    """Collection of `IndexEntry` objects persisted in the encrypted index."""
    version: int = 1
    entries: List[IndexEntry] = []

    @field_validator("entries")
    @classmethod
    def unique_content_ids(cls, v: List[IndexEntry]):
        seen = set()
        for entry in v:
            if entry.content_id in seen:
                raise ValueError(f"duplicate content id {entry.content_id}")
            seen.add(entry.content_id)
        return v
