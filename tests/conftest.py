"""Shared fixtures: a small canonical Rekordbox collection and tagging stubs."""

import asyncio
import os
import tempfile

# Keep config and output files out of the project tree
_TMP = tempfile.mkdtemp(prefix="cratebatch-tests-")
os.environ.setdefault("CRATEBATCH_OUTPUT_DIR", os.path.join(_TMP, "output"))
os.environ.setdefault("CRATEBATCH_CONFIG", os.path.join(_TMP, "config.json"))

import pytest  # noqa: E402

from cratebatch.document import parse_collection  # noqa: E402
from cratebatch.scheduler import BatchUsage, TagBatchResult  # noqa: E402

SAMPLE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<DJ_PLAYLISTS Version="1.0.0">
  <PRODUCT Name="rekordbox" Version="6.7.4" Company="AlphaTheta"/>
  <!-- exported for testing -->
  <COLLECTION Entries="4">
    <TRACK TrackID="1" Name="Strings of Life" Artist="Rhythim Is Rhythim" AverageBpm="124.00" Tonality="8A" Year="1987" Genre="House" TotalTime="200" BitRate="320" Kind="MP3 File" Rating="0" Comments="#Euphoric #ChicagoHouse #PeakHour" Location="file://localhost/Users/dj/Music/strings%20of%20life.mp3">
      <TEMPO Inizio="0.025" Bpm="124.00" Metro="4/4" Battito="1"/>
      <POSITION_MARK Name="Energy 7" Type="0" Start="0.025" Num="0"/>
      <POSITION_MARK Name="Drop" Type="0" Start="60.100" Num="1"/>
    </TRACK>
    <TRACK TrackID="2" Name="Strings Of Life" Artist="Rhythim is Rhythim" AverageBpm="124.00" Tonality="8A" Year="0" Genre="" TotalTime="201" BitRate="320" Kind="MP3 File" Rating="102" Comments="" Location="file://localhost/Users/dj/Music/strings%20of%20life%20(1).mp3"/>
    <TRACK TrackID="3" Name="Windowlicker" Artist="Aphex Twin" AverageBpm="126.00" Tonality="4A" Year="" Genre="Electronic" TotalTime="366" BitRate="320" Kind="MP3 File" Rating="0" Comments="Energy: 5" Location="file://localhost/Users/dj/Music/windowlicker.mp3"/>
    <TRACK TrackID="4" Name="Blue Monday" Artist="New Order" AverageBpm="130.00" Tonality="11B" Year="1983" Genre="" TotalTime="449" BitRate="256" Kind="MP3 File" Rating="0" Comments="" Location="file://localhost/Users/dj/Music/blue%20monday.mp3"/>
  </COLLECTION>
  <PLAYLISTS>
    <NODE Type="0" Name="ROOT" Count="1">
      <NODE Name="Favourites" Type="1" KeyType="0" Entries="1">
        <TRACK Key="1"/>
      </NODE>
    </NODE>
  </PLAYLISTS>
</DJ_PLAYLISTS>
"""


@pytest.fixture
def sample_xml() -> str:
    return SAMPLE_XML


@pytest.fixture
def doc():
    return parse_collection(SAMPLE_XML)


def make_collection(rows) -> str:
    """Minimal document from (track_id, name, artist, total_time) tuples."""
    tracks = "\n".join(
        f'    <TRACK TrackID="{tid}" Name="{name}" Artist="{artist}" TotalTime="{secs}"/>'
        for tid, name, artist, secs in rows
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<DJ_PLAYLISTS Version=\"1.0.0\">\n"
        f"  <COLLECTION Entries=\"{len(rows)}\">\n{tracks}\n  </COLLECTION>\n"
        "</DJ_PLAYLISTS>\n"
    )


def full_reply(item_id, **overrides) -> dict:
    reply = {
        "id": item_id,
        "mood": "Groovy",
        "sub_genre": "Nu Disco",
        "main_genre": "Nu Disco",
        "situation": "Cocktail Hour",
        "release_year": 1999,
    }
    reply.update(overrides)
    return reply


class EchoCollaborator:
    """Answers every requested id. Records requests and peak concurrency."""

    def __init__(self, delay: float = 0.0, reply=full_reply, usage=None):
        self.delay = delay
        self.reply = reply
        self.usage = usage or BatchUsage(input_tokens=100, output_tokens=50, cost=0.01)
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def tag_batch(self, request):
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            items = [self.reply(item["id"]) for item in request.items]
            return TagBatchResult(items=items, usage=self.usage)
        finally:
            self.in_flight -= 1


class FlakyCollaborator(EchoCollaborator):
    """Fails every item on its first request, then answers normally."""

    async def tag_batch(self, request):
        if not self.requests:
            self.requests.append(request)
            raise ConnectionError("upstream reset")
        return await super().tag_batch(request)


@pytest.fixture
def echo():
    return EchoCollaborator()
