"""Transfer matching API router."""

import datetime as dt

from fastapi import APIRouter, HTTPException, Query

from transfer_recon.deps import TransferService
from transfer_recon.schemas import (
    AutoMatchResponse,
    DiagnosticReport,
    DuplicateDetectionRequest,
    DuplicateDetectionResult,
    ImportResult,
    ManualMatchRequest,
    Transaction,
    TransferMatch,
    TransferMatchResponse,
)
from transfer_recon.services.storage import PersistenceError
from transfer_recon.services.tolerance import ToleranceConfigError
from transfer_recon.services.transfer_matching import (
    TransactionNotFoundError,
    TransferMatchError,
)

router = APIRouter(prefix="/transfers", tags=["transfers"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, TransactionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@router.get("/matches", response_model=TransferMatchResponse)
async def preview_matches(
    service: TransferService,
    max_days_difference: int | None = Query(default=None, ge=0),
    tolerance_percentage: float | None = Query(default=None, ge=0, le=1),
    date_from: dt.date | None = Query(default=None),
    date_to: dt.date | None = Query(default=None),
) -> TransferMatchResponse:
    try:
        return await service.find_transfer_matches(
            max_days_difference=max_days_difference,
            tolerance_percentage=tolerance_percentage,
            date_from=date_from,
            date_to=date_to,
        )
    except ToleranceConfigError as exc:
        raise _http_error(exc) from exc


@router.post("/auto-match", response_model=AutoMatchResponse)
async def auto_match(service: TransferService) -> AutoMatchResponse:
    try:
        return await service.auto_match_transfers()
    except PersistenceError as exc:
        raise _http_error(exc) from exc


@router.get("/manual-matches", response_model=TransferMatchResponse)
async def manual_matches(
    service: TransferService,
    max_days_difference: int | None = Query(default=None, ge=0),
    tolerance_percentage: float | None = Query(default=None, ge=0, le=1),
    date_from: dt.date | None = Query(default=None),
    date_to: dt.date | None = Query(default=None),
) -> TransferMatchResponse:
    try:
        return await service.find_manual_transfer_matches(
            max_days_difference=max_days_difference,
            tolerance_percentage=tolerance_percentage,
            date_from=date_from,
            date_to=date_to,
        )
    except ToleranceConfigError as exc:
        raise _http_error(exc) from exc


@router.post("/manual-match", response_model=list[Transaction])
async def manual_match(payload: ManualMatchRequest, service: TransferService) -> list[Transaction]:
    try:
        return await service.manually_match_transfers(payload.source_id, payload.target_id)
    except (TransferMatchError, PersistenceError) as exc:
        raise _http_error(exc) from exc


@router.delete("/matches/{match_id}", response_model=list[Transaction])
async def unmatch(match_id: str, service: TransferService) -> list[Transaction]:
    try:
        return await service.unmatch_transfers(match_id)
    except (TransferMatchError, PersistenceError) as exc:
        raise _http_error(exc) from exc


@router.get("/matched", response_model=list[TransferMatch])
async def matched_transfers(service: TransferService) -> list[TransferMatch]:
    return await service.get_matched_transfers()


@router.get("/unmatched", response_model=list[Transaction])
async def unmatched_transfers(service: TransferService) -> list[Transaction]:
    return await service.get_unmatched_transfers()


@router.post("/same-account/auto-match", response_model=AutoMatchResponse)
async def same_account_auto_match(service: TransferService) -> AutoMatchResponse:
    try:
        return await service.auto_match_same_account_transactions()
    except PersistenceError as exc:
        raise _http_error(exc) from exc


@router.post("/duplicates", response_model=DuplicateDetectionResult)
async def check_duplicates(payload: DuplicateDetectionRequest, service: TransferService) -> DuplicateDetectionResult:
    return await service.detect_duplicates(payload.transactions, payload.config)


@router.post("/import", response_model=ImportResult)
async def import_transactions(payload: DuplicateDetectionRequest, service: TransferService) -> ImportResult:
    try:
        return await service.import_transactions(payload.transactions, payload.config)
    except PersistenceError as exc:
        raise _http_error(exc) from exc


@router.get("/diagnostics", response_model=DiagnosticReport)
async def diagnostics(service: TransferService) -> DiagnosticReport:
    return await service.diagnose_transfer_matching_inconsistencies()
