"""Track models: tag analysis, enrichment modes and API track rows."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, field_validator, model_validator

from cratebatch.taxonomy import UNKNOWN, to_hashtag, validate_tag


class EnrichMode(str, Enum):
    """Which fields an enrichment pass is allowed to touch."""

    FULL = "full"
    MISSING_GENRE = "missing_genre"
    MISSING_YEAR = "missing_year"


def coerce_year(v) -> int | None:
    """``"1997"``, ``1997.0``, ``"1997-05-01"`` -> 1997; blanks, 0 and nonsense -> None."""
    if v is None:
        return None
    text = str(v).strip()[:4]
    try:
        year = int(float(text))
    except (TypeError, ValueError, OverflowError):
        return None
    if year < 1900 or year > datetime.now().year + 1:
        return None
    return year


class Analysis(BaseModel):
    """Validated tag analysis for one track.

    Every string field is resolved against its closed vocabulary on
    construction, so an ``Analysis`` instance can never carry a raw,
    unvalidated tag. ``tag_string`` is always re-derived from the validated
    dimensions.
    """

    mood: str = UNKNOWN
    sub_genre: str = UNKNOWN
    main_genre: str | None = None
    situation: str = UNKNOWN
    year: int | None = None
    tag_string: str | None = None

    @field_validator("mood", mode="before")
    @classmethod
    def _mood(cls, v):
        return validate_tag(v, "mood")

    @field_validator("sub_genre", mode="before")
    @classmethod
    def _sub_genre(cls, v):
        return validate_tag(v, "sub_genre")

    @field_validator("situation", mode="before")
    @classmethod
    def _situation(cls, v):
        return validate_tag(v, "situation")

    @field_validator("main_genre", mode="before")
    @classmethod
    def _main_genre(cls, v):
        if v is None or str(v).strip() == "":
            return None
        return validate_tag(v, "sub_genre")

    @field_validator("year", mode="before")
    @classmethod
    def _year(cls, v):
        return coerce_year(v)

    @model_validator(mode="after")
    def _derive_tag_string(self):
        parts = [to_hashtag(self.mood), to_hashtag(self.sub_genre), to_hashtag(self.situation)]
        self.tag_string = " ".join(p for p in parts if p) or None
        return self

    @classmethod
    def from_raw(cls, item: dict) -> Analysis:
        """Build from a collaborator reply item, accepting legacy key names."""
        return cls(
            mood=item.get("mood", item.get("vibe")),
            sub_genre=item.get("sub_genre", item.get("subGenre", item.get("genre"))),
            main_genre=item.get("main_genre", item.get("mainGenre")),
            situation=item.get("situation"),
            year=item.get("release_year", item.get("year")),
        )

    def hashtags(self) -> list[str]:
        return self.tag_string.split() if self.tag_string else []

    def genre_for_field(self) -> str:
        """Value for the Genre attribute: main genre, falling back to sub-genre."""
        for g in (self.main_genre, self.sub_genre):
            if g and g != UNKNOWN:
                return g
        return ""


class TrackRow(BaseModel):
    """A single track as returned by the API."""

    id: str
    name: str
    artist: str
    bpm: float | None = None
    key: str = ""
    year: str = ""
    genre: str = ""
    total_time: int = 0
    bit_rate: int = 0
    comments: str = ""
    energy: int | None = None
    cue_count: int = 0
    status: str = "untagged"  # "tagged" | "untagged"
    analysis: Analysis | None = None

    @field_validator("bpm", mode="before")
    @classmethod
    def coerce_bpm(cls, v):
        """Blank or zero BPM means unknown."""
        if v is None:
            return None
        try:
            f = float(v)
        except (TypeError, ValueError):
            return None
        if f != f or f <= 0:  # NaN check
            return None
        return f
