"""Duplicate fingerprinting and duration confirmation."""

from conftest import make_collection
from cratebatch.document import parse_collection
from cratebatch.duplicates import find_duplicates, fingerprint, normalize


def _doc(rows):
    return parse_collection(make_collection(rows))


def test_normalize_strips_case_and_punctuation():
    assert normalize("Rhythim Is Rhythim!") == "rhythimisrhythim"
    assert normalize(None) == ""


def test_fingerprint_is_artist_then_title(doc):
    assert fingerprint(doc.track("1")) == "rhythimisrhythimstringsoflife"
    assert fingerprint(doc.track("1")) == fingerprint(doc.track("2"))


def test_outlier_duration_is_excluded():
    doc = _doc([("A", "Song", "Band", 200), ("B", "song", "BAND", 201), ("C", "Song!", "Band", 210)])
    report = find_duplicates(doc.tracks)
    assert len(report.groups) == 1
    assert report.groups[0].track_ids == ["A", "B"]
    assert report.all_duplicate_ids == {"A", "B"}


def test_grouping_is_not_transitive_closure():
    doc = _doc([("A", "Song", "Band", 200), ("B", "Song", "Band", 202), ("C", "Song", "Band", 204)])
    report = find_duplicates(doc.tracks)
    assert len(report.groups) == 1
    assert report.groups[0].track_ids == ["A", "B", "C"]
    assert report.duplicate_count == 3


def test_unknown_duration_never_confirms():
    doc = _doc([("A", "Song", "Band", 0), ("B", "Song", "Band", 0), ("C", "Song", "Band", 1)])
    report = find_duplicates(doc.tracks)
    assert report.groups == []
    assert report.ids == []


def test_separate_buckets_make_separate_groups(doc):
    report = find_duplicates(doc.tracks)
    assert [g.track_ids for g in report.groups] == [["1", "2"]]
    assert report.ids == ["1", "2"]


def test_ids_are_ordered_and_unique():
    doc = _doc([
        ("X1", "Other", "Act", 300), ("A", "Song", "Band", 200),
        ("X2", "Other", "Act", 301), ("B", "Song", "Band", 200),
    ])
    report = find_duplicates(doc.tracks)
    assert report.ids == ["X1", "X2", "A", "B"]
