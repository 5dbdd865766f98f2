"""Library health: tag distributions, Camelot key wheel, missing data and score."""

from __future__ import annotations

import logging
from datetime import datetime

import pandas as pd

from cratebatch.duplicates import DuplicateReport, find_duplicates
from cratebatch.taxonomy import UNKNOWN

logger = logging.getLogger(__name__)

CAMELOT_PATTERN = r"^\d+[AB]$"

FRAME_COLUMNS = [
    "id", "name", "artist", "genre", "year", "key", "bpm", "energy", "comments",
    "mood", "sub_genre", "main_genre", "situation", "analysis_year", "has_analysis",
]


def tracks_frame(tracks) -> pd.DataFrame:
    """One row per track with the analysis dimensions flattened in."""
    rows = []
    for t in tracks:
        a = t.analysis
        rows.append({
            "id": t.track_id,
            "name": t.name,
            "artist": t.artist,
            "genre": t.genre,
            "year": t.year,
            "key": t.key,
            "bpm": t.bpm,
            "energy": t.energy,
            "comments": t.comments,
            "mood": a.mood if a else "",
            "sub_genre": a.sub_genre if a else "",
            "main_genre": (a.main_genre or "") if a else "",
            "situation": a.situation if a else "",
            "analysis_year": str(a.year) if a and a.year else "",
            "has_analysis": a is not None,
        })
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def _title_case(genre: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in genre.split(" "))


def _distribution(series: pd.Series, limit: int | None = None) -> list[dict]:
    counts = series.value_counts(sort=True)
    if limit is not None:
        counts = counts.head(limit)
    return [{"name": str(name), "value": int(value)} for name, value in counts.items()]


def _empty_stats() -> dict:
    return {
        "genre_distribution": [],
        "mood_distribution": [],
        "situation_distribution": [],
        "year_distribution": [],
        "key_distribution": {"major": [], "minor": []},
        "library_score": 0,
        "missing_data": {
            "missing_year": 0,
            "missing_genre": 0,
            "total_tracks": 0,
            "duplicate_count": 0,
            "duplicate_groups": [],
        },
    }


def calculate_library_stats(tracks, duplicates: DuplicateReport | None = None) -> dict:
    tracks = list(tracks)
    if not tracks:
        return _empty_stats()
    if duplicates is None:
        duplicates = find_duplicates(tracks)

    df = tracks_frame(tracks)
    total = len(df)

    # Genres
    genre = df["genre"].str.strip()
    missing_genre = int((genre == "").sum())
    genre = genre.where(genre == "", genre.map(_title_case)).replace("", UNKNOWN)

    # Moods / situations
    mood = df.loc[df["mood"].ne("") & df["mood"].ne(UNKNOWN), "mood"]
    situation = df.loc[df["situation"].ne("") & df["situation"].ne(UNKNOWN), "situation"]

    # Years: the file's value first, then the analysis year
    year_raw = df["year"].str.strip().where(df["year"].str.strip() != "", df["analysis_year"])
    year_raw = year_raw.replace("", "0")
    missing_year = int((year_raw == "0").sum())
    years = pd.to_numeric(year_raw.str[:4], errors="coerce")
    max_year = datetime.now().year + 1
    years = years[(years > 1950) & (years <= max_year)].astype(int)
    year_counts = years.value_counts().sort_index()
    year_distribution = [{"name": str(y), "value": int(v)} for y, v in year_counts.items()]

    # Camelot wheel, all twelve slots kept
    keys = df["key"].str.strip()
    key_counts = keys[keys.str.match(CAMELOT_PATTERN)].value_counts()
    major, minor = [], []
    for i in range(1, 13):
        major.append({"name": f"{i}B", "value": int(key_counts.get(f"{i}B", 0)),
                      "type": "Major", "camelot_index": i})
        minor.append({"name": f"{i}A", "value": int(key_counts.get(f"{i}A", 0)),
                      "type": "Minor", "camelot_index": i})

    # Score
    year_score = max(0.0, (total - missing_year) / total) * 30
    genre_score = max(0.0, (total - missing_genre) / total) * 30
    tagged = int((df["energy"].fillna(0).astype(int).ne(0) | df["has_analysis"]).sum())
    tag_score = tagged / total * 20
    dup_ratio = len(duplicates.ids) / total
    dup_score = max(0.0, 1 - dup_ratio * 5) * 20
    score = int(year_score + genre_score + tag_score + dup_score + 0.5)

    logger.debug("Library stats: %d tracks, score %d", total, score)
    return {
        "genre_distribution": _distribution(genre, 10),
        "mood_distribution": _distribution(mood),
        "situation_distribution": _distribution(situation, 6),
        "year_distribution": year_distribution,
        "key_distribution": {"major": major, "minor": minor},
        "library_score": score,
        "missing_data": {
            "missing_year": missing_year,
            "missing_genre": missing_genre,
            "total_tracks": total,
            "duplicate_count": duplicates.duplicate_count,
            "duplicate_groups": [
                {"fingerprint": g.fingerprint, "track_ids": g.track_ids}
                for g in duplicates.groups
            ],
        },
    }
