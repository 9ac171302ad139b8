from fastapi import APIRouter, Depends, HTTPException, Query, Response, status as http_status

from events_pipeline.schemas.events import (
    IngestRequest,
    IngestResult,
    LinkHealthOut,
    StageRequest,
    StageResult,
    ValidationBatchResult,
    ValidationOutcome,
)
from events_pipeline.services.ingestion import ingest_events, process_staged_events, stage_raw_event
from events_pipeline.services.repository import (
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)
from events_pipeline.services.validation import run_validation_batch, validate_event_by_id

router = APIRouter()


@router.post("/staging", response_model=StageResult, status_code=http_status.HTTP_202_ACCEPTED)
async def stage_event(payload: StageRequest, response: Response, repository=Depends(get_repository)) -> StageResult:
    result = await stage_raw_event(payload.raw, payload.source, staging=repository)
    if not result.success:
        response.status_code = http_status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@router.post("/ingest", response_model=IngestResult)
async def ingest(payload: IngestRequest, repository=Depends(get_repository)) -> IngestResult:
    return await ingest_events(payload.events, payload.source, events=repository)


@router.post("/process-staged", response_model=IngestResult)
async def process_staged(
    batch_size: int | None = Query(default=None, ge=1, le=1000),
    repository=Depends(get_repository),
) -> IngestResult:
    return await process_staged_events(batch_size, staging=repository, events=repository)


@router.post("/recheck", response_model=ValidationBatchResult | ValidationOutcome)
async def recheck(
    batch_size: int | None = Query(default=None, ge=1, le=1000),
    event_id: str | None = Query(default=None, min_length=1),
    repository=Depends(get_repository),
) -> ValidationBatchResult | ValidationOutcome:
    if event_id is None:
        return await run_validation_batch(batch_size, events=repository, tombstones=repository)

    try:
        outcome = await validate_event_by_id(event_id, events=repository, tombstones=repository)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if outcome.error == "event not found":
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=outcome.error)
    return outcome


@router.get("/{event_id}/health", response_model=LinkHealthOut)
async def get_event_health(event_id: str, repository=Depends(get_repository)) -> LinkHealthOut:
    try:
        event = await repository.get_event(event_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return LinkHealthOut(
        event_id=event.id,
        title=event.title,
        canonical_url=event.canonical_url,
        url_status=event.url_status,
        redirect_chain=event.redirect_chain,
        link_health_score=event.link_health_score,
        last_checked_at=event.last_checked_at,
        publishable=event.publishable,
        review_status=event.review_status,
    )
