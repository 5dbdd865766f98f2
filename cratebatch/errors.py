"""Exception types shared across the collection, scheduler and routers."""


class CrateBatchError(Exception):
    """Base class for all cratebatch errors."""


class ParseError(CrateBatchError):
    """The source document could not be read as XML."""


class StructureMissing(ParseError):
    """A required section (or a track's identity) is absent from the source."""

    def __init__(self, what: str) -> None:
        super().__init__(f"Missing {what}")
        self.what = what


class ChunkFailure(CrateBatchError):
    """A single chunk failed at the collaborator; its items go to the retry queue."""


class CollaboratorUnavailable(CrateBatchError):
    """The tagging collaborator cannot be used at all (e.g. no API key)."""
