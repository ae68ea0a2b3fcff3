from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class CipherParams(BaseModel):
    full_string: str = Field(..., description="The scrambled payload.")
    key: str = Field(..., description="Alphabet whose character index is the decoded digit value.")
    offset: int = Field(..., description="Subtracted from every decoded code point.")
    base: int = Field(..., description="Digit base of each segment; key[base] terminates a segment.")

    @model_validator(mode="after")
    def check_key(self):
        if self.base < 2:
            raise ValueError(f"base must be at least 2, got {self.base}")
        if len(self.key) <= self.base:
            raise ValueError(f"key of length {len(self.key)} has no terminator at index {self.base}")
        if len(set(self.key)) != len(self.key):
            raise ValueError("key must not contain duplicate characters")
        return self

    @property
    def terminator(self) -> str:
        return self.key[self.base]


class GenericParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QualityLink(GenericParams):
    id: Optional[int] = None
    audio: Optional[str] = None
    kwik: Optional[str] = None
    kwik_adfly: str = Field(..., description="Ad-gate URL that leads to the kwik page.")


class ReleaseEntry(GenericParams):
    id: Optional[int] = None
    anime_id: int
    episode: int
    title: str = ""
    snapshot: str = ""
    session: str
    filler: int = 0
    created_at: str = ""


class ReleasePage(GenericParams):
    total: int
    per_page: int
    current_page: int = 1
    last_page: int
    next_page_url: Optional[str] = None
    prev_page_url: Optional[str] = None
    from_: Optional[int] = Field(None, alias="from")
    to: Optional[int] = None
    data: list[ReleaseEntry] = Field(default_factory=list)


class StreamCandidate(BaseModel):
    server_label: str
    quality_label: str
    audio_label: str
    final_url: str
    is_encrypted: bool = False
    quality_key: str = Field("", description="Raw quality key as listed by the API, e.g. '720' or '1080p'.")
    referer: str = ""

    @computed_field
    @property
    def name(self) -> str:
        return f"{self.server_label} - {self.quality_key or self.quality_label} [{self.audio_label}]"


class EpisodeDescriptor(BaseModel):
    descriptor: str
    episode: Optional[int] = None
    title: Optional[str] = None
    snapshot: Optional[str] = None
    created_at: Optional[str] = None


class QualityFailure(BaseModel):
    quality: str
    kind: str
    message: str


class ExtractionReport(BaseModel):
    candidates: list[StreamCandidate] = Field(default_factory=list)
    failures: list[QualityFailure] = Field(default_factory=list)


@dataclass
class RetryState:
    """Outcome of a bounded polling loop."""

    attempt: int = 0
    max_attempts: int = 20
    last_status: Optional[int] = None
    target_status: Optional[int] = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts and self.last_status != self.target_status


FailurePolicy = Literal["abort", "skip"]
