"""Rekordbox collection document: order-preserving node tree, tracks and export.

The source XML is decoded into a plain ``Node`` tree that keeps sibling
order, attribute order and every element this package does not understand.
``Track`` objects are live views onto ``TRACK`` nodes: reads go straight to
the node's attributes and the only write path is ``Track.apply_analysis``,
so the in-memory track and the tree that gets exported cannot drift apart.

Usage::

    doc = parse_collection(xml_text)
    for track in doc.tracks_missing_year():
        track.apply_analysis(analysis, EnrichMode.MISSING_YEAR)
    xml_out = doc.export()
"""

from __future__ import annotations

import logging
import weakref
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from urllib.parse import quote, unquote
from xml.sax.saxutils import escape

from cratebatch.errors import ParseError, StructureMissing
from cratebatch.models.track import Analysis, EnrichMode, TrackRow
from cratebatch.parser import extract_analysis, resolve_energy
from cratebatch.taxonomy import UNKNOWN, find_hashtags

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

ELEMENT = "element"
COMMENT = "comment"
PI = "pi"

YEAR_SENTINELS = ("", "0")


# ---------------------------------------------------------------------------
# Node tree
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Node:
    """One XML element (or comment / processing instruction).

    ``eq=False`` keeps identity semantics: two nodes with equal content are
    still different places in the tree.
    """

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    children: list[Node] = field(default_factory=list)
    text: str = ""
    kind: str = ELEMENT

    def elements(self, tag: str | None = None) -> list[Node]:
        return [
            c for c in self.children
            if c.kind == ELEMENT and (tag is None or c.tag == tag)
        ]

    def find(self, tag: str) -> Node | None:
        for c in self.children:
            if c.kind == ELEMENT and c.tag == tag:
                return c
        return None

    def get(self, name: str, default: str = "") -> str:
        return self.attributes.get(name, default)


def _from_element(elem: ET.Element) -> Node:
    if elem.tag is ET.Comment:
        return Node(tag="", text=elem.text or "", kind=COMMENT)
    if elem.tag is ET.ProcessingInstruction:
        return Node(tag="", text=elem.text or "", kind=PI)
    return Node(
        tag=elem.tag,
        attributes=dict(elem.attrib),
        children=[_from_element(c) for c in elem],
        text=(elem.text or "").strip(),
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

_ATTR_ENTITIES = {'"': "&quot;", "\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}


def _write(node: Node, depth: int, lines: list[str]) -> None:
    pad = "  " * depth
    if node.kind == COMMENT:
        lines.append(f"{pad}<!--{node.text}-->")
        return
    if node.kind == PI:
        lines.append(f"{pad}<?{node.text}?>")
        return

    attrs = "".join(
        f' {name}="{escape(value, _ATTR_ENTITIES)}"'
        for name, value in node.attributes.items()
    )
    text = escape(node.text) if node.text else ""
    if not node.children:
        if text:
            lines.append(f"{pad}<{node.tag}{attrs}>{text}</{node.tag}>")
        else:
            lines.append(f"{pad}<{node.tag}{attrs}/>")
        return

    lines.append(f"{pad}<{node.tag}{attrs}>{text}")
    for child in node.children:
        _write(child, depth + 1, lines)
    lines.append(f"{pad}</{node.tag}>")


def serialize(root: Node) -> str:
    """Canonical text for a node tree: declaration, 2-space indent, trailing newline."""
    lines = [XML_DECLARATION]
    _write(root, 0, lines)
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Location normalization
# ---------------------------------------------------------------------------

_LOCATION_PREFIX = "file://localhost"
# Characters encodeURI leaves alone besides alphanumerics and "_.-~"
_URI_SAFE = "/;,?:@&=+$!*'()#"


def format_location(path: str) -> str:
    """Normalize a track location to ``file://localhost/<percent-encoded path>``.

    decode -> strip known prefix -> force leading slash -> re-encode ->
    re-prefix. Running it on its own output returns the same string.
    """
    if not path:
        return ""
    try:
        clean = unquote(path, errors="strict")
    except UnicodeDecodeError:
        # Stray "%" sequences are kept literally and re-encoded as %25
        clean = path
    if clean.startswith("file://localhost/"):
        clean = "/" + clean[len("file://localhost/"):]
    elif clean.startswith("file:///"):
        clean = "/" + clean[len("file:///"):]
    if not clean.startswith("/"):
        clean = "/" + clean
    return _LOCATION_PREFIX + quote(clean, safe=_URI_SAFE)


# ---------------------------------------------------------------------------
# Track view
# ---------------------------------------------------------------------------

def _to_int(value) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class Track:
    """Read/write view of one ``TRACK`` node.

    The document owns the node; the track only holds a weak reference to
    it. Attribute properties read the node every time. ``apply_analysis``
    is the single mutation entry point.
    """

    def __init__(self, node: Node, energy: int | None = None, cue_count: int = 0,
                 analysis: Analysis | None = None) -> None:
        self._node_ref = weakref.ref(node)
        self.energy = energy
        self.cue_count = cue_count
        self._analysis = analysis

    def __repr__(self) -> str:
        return f"Track({self.track_id!r}, {self.artist!r} - {self.name!r})"

    @property
    def node(self) -> Node:
        node = self._node_ref()
        if node is None:
            raise ReferenceError("Track node is no longer part of a document")
        return node

    def _attr(self, name: str, default: str = "") -> str:
        return self.node.attributes.get(name, default)

    @property
    def track_id(self) -> str:
        return self._attr("TrackID")

    @property
    def name(self) -> str:
        return self._attr("Name") or "Unknown Title"

    @property
    def artist(self) -> str:
        return self._attr("Artist") or "Unknown Artist"

    @property
    def bpm(self) -> float:
        return _to_float(self._attr("AverageBpm", "0"))

    @property
    def key(self) -> str:
        return self._attr("Tonality")

    @property
    def year(self) -> str:
        return self._attr("Year")

    @property
    def genre(self) -> str:
        return self._attr("Genre")

    @property
    def total_time(self) -> int:
        return _to_int(self._attr("TotalTime", "0"))

    @property
    def bit_rate(self) -> int:
        return _to_int(self._attr("BitRate", "0"))

    @property
    def comments(self) -> str:
        return self._attr("Comments")

    @property
    def kind(self) -> str:
        return self._attr("Kind")

    @property
    def location(self) -> str:
        return self._attr("Location")

    @property
    def analysis(self) -> Analysis | None:
        return self._analysis

    @property
    def missing_year(self) -> bool:
        return self.year.strip() in YEAR_SENTINELS

    @property
    def missing_genre(self) -> bool:
        return not self.genre.strip()

    # -- Mutation --

    def apply_analysis(self, analysis: Analysis, mode: EnrichMode | str) -> bool:
        """Merge a validated analysis into the node under the mode's precedence rules.

        - ``missing_genre``: Genre <- main genre (falling back to sub-genre).
        - ``missing_year``: Year filled only while it is empty or ``0``.
        - ``full``: hashtags appended to Comments (only those not already
          present), Year filled as above, Genre filled from the main genre
          only while empty; the track's in-memory analysis is replaced.

        A year is never regressed in any mode: an empty or ``0`` year is the
        only value that gets written over. Returns True if the node changed.
        """
        mode = EnrichMode(mode)
        attrs = self.node.attributes
        before = dict(attrs)

        if mode is EnrichMode.MISSING_GENRE:
            genre = analysis.genre_for_field()
            if genre:
                attrs["Genre"] = genre
        elif mode is EnrichMode.FULL:
            self._append_hashtags(analysis)
            main = analysis.main_genre
            if main and main != UNKNOWN and not attrs.get("Genre", "").strip():
                attrs["Genre"] = main
            self._analysis = analysis
        # Every mode fills a year, but only over an empty or 0 value
        self._fill_year(analysis)

        return attrs != before

    def _fill_year(self, analysis: Analysis) -> None:
        if analysis.year and self.missing_year:
            self.node.attributes["Year"] = str(analysis.year)

    def _append_hashtags(self, analysis: Analysis) -> None:
        current = self.node.attributes.get("Comments", "")
        present = set(find_hashtags(current))
        new = [h for h in analysis.hashtags() if h[1:].lower() not in present]
        if not new:
            return
        tags = " ".join(new)
        self.node.attributes["Comments"] = f"{current} {tags}" if current else tags

    def to_row(self) -> TrackRow:
        return TrackRow(
            id=self.track_id,
            name=self.name,
            artist=self.artist,
            bpm=self.bpm,
            key=self.key,
            year=self.year,
            genre=self.genre,
            total_time=self.total_time,
            bit_rate=self.bit_rate,
            comments=self.comments,
            energy=self.energy,
            cue_count=self.cue_count,
            status="tagged" if self._analysis else "untagged",
            analysis=self._analysis,
        )


def build_track(node: Node) -> Track:
    if not node.get("TrackID"):
        raise StructureMissing("TRACK@TrackID")
    cue_names = [c.get("Name") for c in node.elements("POSITION_MARK")]
    comments = node.get("Comments")
    return Track(
        node,
        energy=resolve_energy(cue_names, comments, node.get("Rating")),
        cue_count=len(cue_names),
        analysis=extract_analysis(comments),
    )


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class CollectionDocument:
    """A parsed ``DJ_PLAYLISTS`` document and the tracks it owns."""

    def __init__(self, root: Node, tracks: list[Track]) -> None:
        self.root = root
        self.tracks = tracks
        self._by_id = {t.track_id: t for t in tracks}

    def __len__(self) -> int:
        return len(self.tracks)

    @property
    def collection(self) -> Node:
        node = self.root.find("COLLECTION")
        if node is None:
            raise StructureMissing("COLLECTION")
        return node

    def track(self, track_id: str) -> Track | None:
        return self._by_id.get(track_id)

    def tracks_missing_year(self) -> list[Track]:
        return [t for t in self.tracks if t.missing_year]

    def tracks_missing_genre(self) -> list[Track]:
        return [t for t in self.tracks if t.missing_genre]

    def tracks_without_analysis(self) -> list[Track]:
        return [t for t in self.tracks if t.analysis is None]

    def work_list(self, mode: EnrichMode | str) -> list[Track]:
        """Tracks that still need data for an enrichment mode."""
        mode = EnrichMode(mode)
        if mode is EnrichMode.MISSING_YEAR:
            return self.tracks_missing_year()
        if mode is EnrichMode.MISSING_GENRE:
            return self.tracks_missing_genre()
        return self.tracks_without_analysis()

    def playlists_root(self, create: bool = False) -> Node | None:
        """The root ``NODE`` under ``PLAYLISTS``; optionally created when absent."""
        playlists = self.root.find("PLAYLISTS")
        if playlists is None:
            if not create:
                return None
            playlists = Node(tag="PLAYLISTS")
            self.root.children.append(playlists)
        root = playlists.find("NODE")
        if root is None and create:
            root = Node(tag="NODE", attributes={"Type": "0", "Name": "ROOT", "Count": "0"})
            playlists.children.append(root)
        return root

    def normalize_locations(self) -> None:
        for node in self.collection.elements("TRACK"):
            location = node.attributes.get("Location")
            if location:
                node.attributes["Location"] = format_location(location)

    def export(self) -> str:
        """Normalize track locations, then serialize the whole tree in order."""
        self.normalize_locations()
        return serialize(self.root)


def parse_collection(source: str | bytes) -> CollectionDocument:
    """Parse Rekordbox XML into a CollectionDocument.

    Raises ParseError for malformed XML and StructureMissing when the
    ``DJ_PLAYLISTS`` root, the ``COLLECTION`` section or a track's
    ``TrackID`` is absent. There is no partial recovery.
    """
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True, insert_pis=True))
    try:
        elem = ET.fromstring(source, parser=parser)
    except ET.ParseError as e:
        raise ParseError(f"Invalid XML: {e}") from e

    root = _from_element(elem)
    if root.tag != "DJ_PLAYLISTS":
        raise StructureMissing("DJ_PLAYLISTS")
    collection = root.find("COLLECTION")
    if collection is None:
        raise StructureMissing("COLLECTION")

    tracks = [build_track(node) for node in collection.elements("TRACK")]
    logger.info("Parsed collection: %d tracks", len(tracks))
    return CollectionDocument(root, tracks)

