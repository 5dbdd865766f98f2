"""Structured filters plus free-text search over the current tracks."""

from __future__ import annotations

import logging
import re

import pandas as pd
from pydantic import BaseModel, Field

from cratebatch.stats import tracks_frame

logger = logging.getLogger(__name__)

_DECADE_RE = re.compile(r"^\d0s$")

TEXT_COLUMNS = [
    "name", "artist", "genre", "year", "comments",
    "mood", "sub_genre", "situation", "analysis_year", "key",
]


class SmartFilterCriteria(BaseModel):
    keywords: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    moods: list[str] = Field(default_factory=list)
    situations: list[str] = Field(default_factory=list)
    min_bpm: float | None = None
    max_bpm: float | None = None
    min_year: int | None = None
    max_year: int | None = None
    min_energy: int | None = None
    max_energy: int | None = None


def decade_prefix(token: str) -> str | None:
    """``"90s"`` -> ``"199"``, ``"00s"`` -> ``"200"``; None for other tokens."""
    if not _DECADE_RE.match(token):
        return None
    digit = token[0]
    return "200" if digit == "0" else f"19{digit}"


def _range_mask(values: pd.Series, low, high) -> pd.Series:
    """Unknown (zero / missing) values always pass a range filter."""
    mask = pd.Series(True, index=values.index)
    known = values.fillna(0) > 0
    if low:
        mask &= ~known | (values >= low)
    if high:
        mask &= ~known | (values <= high)
    return mask


def _bpm_mask(values: pd.Series, low, high) -> pd.Series:
    mask = pd.Series(True, index=values.index)
    if low:
        mask &= values >= low
    if high:
        mask &= values <= high
    return mask


def _criteria_mask(df: pd.DataFrame, criteria: SmartFilterCriteria) -> pd.Series:
    mask = pd.Series(True, index=df.index)

    if criteria.genres:
        genre = df["genre"].where(df["genre"] != "", df["sub_genre"]).str.lower()
        wanted = [g.lower() for g in criteria.genres]
        mask &= genre.map(lambda value: any(g in value for g in wanted))

    if criteria.moods:
        mask &= df["mood"].str.lower().isin([m.lower() for m in criteria.moods])

    if criteria.situations:
        mask &= df["situation"].str.lower().isin([s.lower() for s in criteria.situations])

    mask &= _bpm_mask(df["bpm"], criteria.min_bpm, criteria.max_bpm)

    year = df["year"].where(df["year"] != "", df["analysis_year"])
    years = pd.to_numeric(year.str[:4], errors="coerce")
    mask &= _range_mask(years, criteria.min_year, criteria.max_year)

    energy = pd.to_numeric(df["energy"], errors="coerce")
    mask &= _range_mask(energy, criteria.min_energy, criteria.max_energy)
    return mask


def _text_mask(df: pd.DataFrame, query: str) -> pd.Series:
    mask = pd.Series(True, index=df.index)
    tokens = query.lower().split()
    if not tokens:
        return mask

    haystack = df[TEXT_COLUMNS].astype(str).apply(" ".join, axis=1).str.lower()
    year = df["year"].where(df["year"] != "", df["analysis_year"])
    for token in tokens:
        hit = haystack.str.contains(token, regex=False)
        prefix = decade_prefix(token)
        if prefix:
            hit |= year.str.startswith(prefix)
        mask &= hit
    return mask


def filter_tracks(tracks, criteria: SmartFilterCriteria | None = None, query: str = "") -> list:
    """Tracks matching every structured criterion and every search token.

    The text query defaults to the criteria's keywords.
    """
    tracks = list(tracks)
    if not tracks:
        return []
    criteria = criteria or SmartFilterCriteria()
    if not query:
        query = " ".join(criteria.keywords)

    df = tracks_frame(tracks)
    mask = _criteria_mask(df, criteria) & _text_mask(df, query)
    result = [t for t, keep in zip(tracks, mask.tolist()) if keep]
    logger.debug("Filter matched %d/%d tracks", len(result), len(tracks))
    return result
