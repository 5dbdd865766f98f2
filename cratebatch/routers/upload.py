"""Upload and restore routes: Rekordbox XML upload + auto-restore on page refresh."""

import logging

from fastapi import APIRouter, Depends, HTTPException, UploadFile

from cratebatch.document import parse_collection
from cratebatch.errors import ParseError
from cratebatch.models.common import ErrorResponse, UploadSummary
from cratebatch.routers._helpers import archive, autosave, summary
from cratebatch.state import AppState, get_state
from cratebatch.tasks import BackgroundTaskManager, get_task_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])


@router.post(
    "/upload",
    response_model=UploadSummary,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def upload(
    file: UploadFile,
    state: AppState = Depends(get_state),
    tasks: BackgroundTaskManager = Depends(get_task_manager),
):
    if not file.filename or not file.filename.lower().endswith(".xml"):
        raise HTTPException(status_code=400, detail="Only Rekordbox XML files are supported")

    contents = await file.read()
    try:
        document = parse_collection(contents)
    except ParseError as e:
        raise HTTPException(status_code=400, detail=f"Could not parse collection: {e}")

    # A running job holds tracks of the current document
    if tasks.is_running("enrich"):
        raise HTTPException(
            status_code=409, detail="Stop the running enrichment job before uploading"
        )

    state.set_document(document, file.filename)
    await autosave(state)
    await archive.remember(file.filename)
    logger.info("Loaded %s (%d tracks)", file.filename, len(document.tracks))
    return summary(state)


@router.get("/restore", response_model=UploadSummary)
async def restore(state: AppState = Depends(get_state)):
    if state.document is not None:
        return {**summary(state), "restored": True}

    restored = await archive.restore()
    if restored is None:
        return UploadSummary(restored=False)

    document, original = restored
    state.set_document(document, original)
    return {**summary(state), "restored": True}
