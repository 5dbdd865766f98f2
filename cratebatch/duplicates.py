"""Duplicate detection: artist+title fingerprint buckets confirmed by duration."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DURATION_TOLERANCE = 2  # seconds

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def normalize(text: str | None) -> str:
    return _NON_ALNUM_RE.sub("", (text or "").lower())


def fingerprint(track) -> str:
    return normalize(track.artist) + normalize(track.name)


@dataclass
class DuplicateGroup:
    fingerprint: str
    members: list = field(default_factory=list)

    @property
    def track_ids(self) -> list[str]:
        return [t.track_id for t in self.members]


@dataclass
class DuplicateReport:
    """``ids`` is ordered (first confirmation first) and unique."""

    ids: list[str] = field(default_factory=list)
    groups: list[DuplicateGroup] = field(default_factory=list)

    @property
    def all_duplicate_ids(self) -> set[str]:
        return set(self.ids)

    @property
    def duplicate_count(self) -> int:
        return len(self.ids)


def _is_confirmed_pair(a, b) -> bool:
    da, db = a.total_time, b.total_time
    if da == 0 or db == 0:
        return False
    return abs(da - db) <= DURATION_TOLERANCE


def find_duplicates(tracks) -> DuplicateReport:
    """Group tracks that share a fingerprint and a duration within 2 seconds.

    Every pair inside a fingerprint bucket is compared. A track joins its
    bucket's group when it sits on either side of at least one confirmed
    pair, so the grouping is not a transitive closure: with durations
    200/202/204 all three are members even though 200 and 204 are four
    seconds apart. Buckets left with fewer than two members are dropped.
    """
    buckets: dict[str, list] = {}
    for t in tracks:
        fp = fingerprint(t)
        if not fp:
            continue
        buckets.setdefault(fp, []).append(t)

    report = DuplicateReport()
    seen_ids: set[str] = set()

    for fp, bucket in buckets.items():
        if len(bucket) < 2:
            continue
        confirmed = [False] * len(bucket)
        for i in range(len(bucket)):
            for j in range(i + 1, len(bucket)):
                if _is_confirmed_pair(bucket[i], bucket[j]):
                    confirmed[i] = confirmed[j] = True
                    for t in (bucket[i], bucket[j]):
                        if t.track_id not in seen_ids:
                            seen_ids.add(t.track_id)
                            report.ids.append(t.track_id)

        members = [t for t, ok in zip(bucket, confirmed) if ok]
        if len(members) >= 2:
            report.groups.append(DuplicateGroup(fingerprint=fp, members=members))

    return report
