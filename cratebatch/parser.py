"""Comment parser: hashtag analysis, energy resolution and entity cleanup."""

import re

from cratebatch.models.track import Analysis
from cratebatch.taxonomy import UNKNOWN, find_hashtags, match_hashtags

# ---------------------------------------------------------------------------
# Entity cleanup
# ---------------------------------------------------------------------------

_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def decode_entities(text):
    """Decode XML entities left over in a value (e.g. ``#R&amp;B`` -> ``#R&B``).

    The XML parser already decodes one level; comments written by other
    tools are sometimes double-escaped, so a second pass is applied here.
    """
    if not text:
        return ""
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


# ---------------------------------------------------------------------------
# Hashtag analysis
# ---------------------------------------------------------------------------

def extract_analysis(comments):
    """Rebuild an Analysis from hashtags found in a comment string.

    Returns None unless at least one hashtag matches a vocabulary entry;
    dimensions without a match come back as ``Unknown``.
    """
    tags = find_hashtags(decode_entities(comments))
    if not tags:
        return None

    mood = match_hashtags(tags, "mood")
    sub_genre = match_hashtags(tags, "sub_genre")
    situation = match_hashtags(tags, "situation")

    if not (mood or sub_genre or situation):
        return None
    return Analysis(
        mood=mood or UNKNOWN,
        sub_genre=sub_genre or UNKNOWN,
        situation=situation or UNKNOWN,
    )


# ---------------------------------------------------------------------------
# Energy
# ---------------------------------------------------------------------------

_CUE_ENERGY_RE = re.compile(r"Energy\s+(\d+)", re.IGNORECASE)
_COMMENT_ENERGY_RE = re.compile(r"Energy\s*:\s*(\d+)", re.IGNORECASE)


def energy_mode(values):
    """Most frequent value; on a tie, the first value to reach the top count wins."""
    counts = {}
    best = None
    best_count = 0
    for v in values:
        counts[v] = counts.get(v, 0) + 1
        if counts[v] > best_count:
            best_count = counts[v]
            best = v
    return best


def energy_from_cues(cue_names):
    values = []
    for name in cue_names:
        m = _CUE_ENERGY_RE.search(name or "")
        if m:
            values.append(int(m.group(1)))
    return energy_mode(values)


def energy_from_comments(comments):
    m = _COMMENT_ENERGY_RE.search(comments or "")
    return int(m.group(1)) if m else None


def energy_from_rating(rating):
    """Rekordbox stores stars as 0-255; 51 per star."""
    try:
        r = int(rating)
    except (TypeError, ValueError):
        return None
    if r <= 0:
        return None
    return int(r / 51 + 0.5)


def resolve_energy(cue_names, comments, rating):
    """Energy from cue labels, else comments, else rating. None if no source has one."""
    sources = (
        lambda: energy_from_cues(cue_names),
        lambda: energy_from_comments(comments),
        lambda: energy_from_rating(rating),
    )
    for source in sources:
        value = source()
        if value is not None:
            return value
    return None
