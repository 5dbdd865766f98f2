"""Closed tag vocabularies and the validation that maps free text onto them."""

import logging
import re

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

MOOD_TAGS = [
    "Euphoric", "Gritty", "Breezy", "Sultry", "Aggressive",
    "Hypnotic", "Bouncy", "Soulful", "Nostalgic", "Trippy",
    "Raw", "Cinematic", "Groovy", "Dark", "Cheesy",
]

SUB_GENRE_TAGS = [
    # Electronic / Dance
    "Acid Jazz", "Afro House", "Amapiano", "Bass House", "Big Room",
    "Boom Bap", "Chicago House", "Complextro", "Dancehall", "Deep Tech",
    "Detroit Techno", "Disco Edit", "Drum & Bass", "Dubstep", "Electro Swing",
    "Eurodance", "Future Bass", "Future House", "G-House", "Garage / UKG",
    "Glitch Hop", "Hardstyle", "Indie Dance", "Italo Disco", "Jersey Club",
    "Latin Tech", "Liquid DnB", "Lo-Fi HipHop", "Melodic Techno", "Minimal",
    "Moombahton", "Motown", "Neo Soul", "Nu Disco", "Progressive Trance",
    "Psytrance", "Reggaeton", "Synthwave", "Tech House", "Trap",
    "Tribal House", "Tropical House", "Yacht Rock", "00s Pop",
    "90s HipHop", "80s NewWave",
    # Rock / Metal / Alternative
    "Heavy Metal", "Hard Rock", "Thrash Metal", "Classic Rock", "Alternative Rock",
    "Indie Rock", "Punk Rock", "Pop Punk", "Grunge", "Industrial", "Nu Metal",
    # Open format / other
    "R&B", "Contemporary Pop", "K-Pop", "Latin Pop", "Reggae", "Ska",
    "Blues", "Funk", "Soul", "Country", "Folk", "Classical",
]

SITUATION_TAGS = [
    "Warm Up", "Cocktail Hour", "Sunset Session", "Poolside", "Peak Hour",
    "Festival Stage", "After Party", "Gym Workout", "Road Trip", "Date Night",
    "Beach Club", "Radio Friendly", "Closing Set", "Transition Tool", "Crowd Control",
]

# Common spellings the tagging service (or a human) uses for vocabulary entries
_ALIASES = {
    "dnb": "Drum & Bass",
    "d&b": "Drum & Bass",
    "drum and bass": "Drum & Bass",
    "drum n bass": "Drum & Bass",
    "liquid drum & bass": "Liquid DnB",
    "ukg": "Garage / UKG",
    "uk garage": "Garage / UKG",
    "garage": "Garage / UKG",
    "rnb": "R&B",
    "r & b": "R&B",
    "r and b": "R&B",
    "lofi hip hop": "Lo-Fi HipHop",
    "lo-fi hip hop": "Lo-Fi HipHop",
    "kpop": "K-Pop",
    "euphorric": "Euphoric",
    "warmup": "Warm Up",
    "warm-up": "Warm Up",
    "peak time": "Peak Hour",
    "afterparty": "After Party",
    "after-party": "After Party",
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _index(vocabulary):
    return {v.lower(): v for v in vocabulary}


_INDEXES = {
    "mood": _index(MOOD_TAGS),
    "sub_genre": _index(SUB_GENRE_TAGS),
    "situation": _index(SITUATION_TAGS),
}

VOCABULARIES = {
    "mood": MOOD_TAGS,
    "sub_genre": SUB_GENRE_TAGS,
    "situation": SITUATION_TAGS,
}


def validate_tag(value, dimension):
    """Return the vocabulary entry for ``value`` in ``dimension``, or ``Unknown``.

    Matching is case-insensitive on trimmed input, after alias resolution.
    Anything that does not resolve is downgraded to ``Unknown``; the raw
    string never leaks through.
    """
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    if not text:
        return UNKNOWN
    index = _INDEXES[dimension]
    key = text.lower()
    if key in index:
        return index[key]
    alias = _ALIASES.get(key)
    if alias and alias.lower() in index:
        return index[alias.lower()]
    if key != UNKNOWN.lower():
        logger.debug("Unrecognised %s tag %r downgraded to %s", dimension, text, UNKNOWN)
    return UNKNOWN


# ---------------------------------------------------------------------------
# Hashtags
# ---------------------------------------------------------------------------

_HASHTAG_RE = re.compile(r"#[A-Za-z0-9_\-&]+")
_NON_HASHTAG_RE = re.compile(r"[^A-Za-z0-9_\-&]")


def to_hashtag(value):
    """``"Drum & Bass"`` -> ``"#Drum&Bass"``; empty or Unknown -> ``""``."""
    if not value or value == UNKNOWN:
        return ""
    return "#" + _NON_HASHTAG_RE.sub("", value)


def find_hashtags(text):
    """All hashtag tokens in ``text``, lower-cased without the leading ``#``."""
    if not text:
        return []
    return [t[1:].lower() for t in _HASHTAG_RE.findall(text)]


def match_hashtags(tags, dimension):
    """First vocabulary entry (in table order) whose hashtag form is in ``tags``."""
    found = set(tags)
    for item in VOCABULARIES[dimension]:
        if _NON_HASHTAG_RE.sub("", item).lower() in found:
            return item
    return ""
