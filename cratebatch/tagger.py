import json
import logging

from cratebatch.errors import ChunkFailure
from cratebatch.models.track import Analysis, EnrichMode
from cratebatch.scheduler import AUTHORITATIVE, STANDARD, TagRequest, track_payload
from cratebatch.taxonomy import MOOD_TAGS, SITUATION_TAGS, SUB_GENRE_TAGS

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are an expert DJ music librarian. You answer with JSON only."

_MODE_INSTRUCTIONS = {
    EnrichMode.FULL: (
        'Each object MUST have: "id" (matching the track id), "mood", "sub_genre", '
        '"main_genre", "situation", "release_year".'
    ),
    EnrichMode.MISSING_GENRE: (
        'Each object MUST have: "id" (matching the track id), "main_genre" and "sub_genre".'
    ),
    EnrichMode.MISSING_YEAR: (
        'Each object MUST have: "id" (matching the track id) and "release_year" '
        "(the original release year, YYYY)."
    ),
}

_AUTHORITATIVE_INSTRUCTION = (
    "These tracks could not be resolved on a first pass. Take extra care: prefer the "
    "original release over remasters, compilations and re-issues, and omit a track "
    "entirely rather than guess."
)


def build_batch_prompt(items, mode, strategy_hint=STANDARD):
    """Prompt asking for one JSON object per track, restricted to the vocabularies."""
    mode = EnrichMode(mode)
    lines = [
        "Task: Tag the following list of music tracks.",
        "Return a JSON array of objects.",
        _MODE_INSTRUCTIONS[mode],
        "",
        "Allowed values:",
        f"MOODS: {', '.join(MOOD_TAGS)}",
        f"GENRES: {', '.join(SUB_GENRE_TAGS)}",
        f"SITUATIONS: {', '.join(SITUATION_TAGS)}",
    ]
    if strategy_hint == AUTHORITATIVE:
        lines += ["", _AUTHORITATIVE_INSTRUCTION]
    lines += ["", "Tracks:", json.dumps(items, ensure_ascii=False)]
    return "\n".join(lines)


def parse_batch_reply(data):
    """Normalize a parsed reply into a list of item dicts with an ``id``.

    Accepts a bare array, a single object, or an object wrapping the array
    under ``tracks`` / ``items`` / ``results``. Raises ChunkFailure when
    nothing usable is left.
    """
    if isinstance(data, dict):
        for key in ("tracks", "items", "results"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
        else:
            data = [data]
    if not isinstance(data, list):
        raise ChunkFailure("Reply is not a JSON array")

    items = []
    for item in data:
        if isinstance(item, dict) and item.get("id") not in (None, ""):
            items.append({**item, "id": str(item["id"])})
    if not items:
        raise ChunkFailure("Reply contained no track items")
    return items


async def tag_single_track(track, collaborator):
    """Enrich one track in full mode. Returns the validated Analysis, or None."""
    result = await collaborator.tag_batch(
        TagRequest(items=[track_payload(track)], mode=EnrichMode.FULL)
    )
    for item in result.items:
        if str(item.get("id")) == track.track_id:
            analysis = Analysis.from_raw(item)
            track.apply_analysis(analysis, EnrichMode.FULL)
            return analysis
    logger.warning("No reply for track %s – %s", track.name, track.artist)
    return None
