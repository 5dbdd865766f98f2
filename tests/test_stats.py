"""Library health statistics."""

from cratebatch.duplicates import find_duplicates
from cratebatch.stats import calculate_library_stats, tracks_frame


def test_tracks_frame_flattens_analysis(doc):
    df = tracks_frame(doc.tracks)
    assert list(df["id"]) == ["1", "2", "3", "4"]
    assert df.loc[0, "mood"] == "Euphoric"
    assert df.loc[1, "mood"] == ""
    assert bool(df.loc[0, "has_analysis"]) is True


def test_stats_counts(doc):
    stats = calculate_library_stats(doc.tracks)
    missing = stats["missing_data"]
    assert missing["total_tracks"] == 4
    assert missing["missing_year"] == 2
    assert missing["missing_genre"] == 2
    assert missing["duplicate_count"] == 2
    assert missing["duplicate_groups"] == [
        {"fingerprint": "rhythimisrhythimstringsoflife", "track_ids": ["1", "2"]}
    ]

    genres = {g["name"]: g["value"] for g in stats["genre_distribution"]}
    assert genres == {"Unknown": 2, "House": 1, "Electronic": 1}
    assert stats["mood_distribution"] == [{"name": "Euphoric", "value": 1}]
    assert stats["situation_distribution"] == [{"name": "Peak Hour", "value": 1}]
    assert stats["year_distribution"] == [{"name": "1983", "value": 1}, {"name": "1987", "value": 1}]


def test_camelot_wheel_has_all_slots(doc):
    keys = calculate_library_stats(doc.tracks)["key_distribution"]
    assert [k["name"] for k in keys["minor"]] == [f"{i}A" for i in range(1, 13)]
    assert [k["name"] for k in keys["major"]] == [f"{i}B" for i in range(1, 13)]
    minor = {k["name"]: k["value"] for k in keys["minor"]}
    assert minor["8A"] == 2 and minor["4A"] == 1 and minor["1A"] == 0
    assert {k["name"]: k["value"] for k in keys["major"]}["11B"] == 1


def test_library_score(doc):
    # years 2/4, genres 2/4, energy-or-analysis 3/4, duplicates 2/4 -> penalty floors at 0
    stats = calculate_library_stats(doc.tracks, find_duplicates(doc.tracks))
    assert stats["library_score"] == 15 + 15 + 15 + 0


def test_genre_names_are_title_cased():
    from conftest import make_collection
    from cratebatch.document import parse_collection

    doc = parse_collection(make_collection([("1", "a", "b", 1), ("2", "c", "d", 2)])
                           .replace('TotalTime="1"', 'TotalTime="1" Genre="deep HOUSE"')
                           .replace('TotalTime="2"', 'TotalTime="2" Genre="Deep House "'))
    stats = calculate_library_stats(doc.tracks)
    assert stats["genre_distribution"] == [{"name": "Deep House", "value": 2}]


def test_empty_library():
    stats = calculate_library_stats([])
    assert stats["library_score"] == 0
    assert stats["missing_data"]["total_tracks"] == 0
