from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from . import crud, schemas
from .core.config import settings
from .db import get_db, init_db
from .domain import ResolutionResult
from .repositories import SettlementRepository
from .services.resolution_service import ResolutionService
from .services.settlement import ResolutionErrorCode, SettlementFailedError
from .services.settlement.affinity import taste_match_percentage, taste_match_strength

app = FastAPI(title="Market Settlement API", version="0.1.0", debug=settings.debug)

_ERROR_STATUS = {
    ResolutionErrorCode.NOT_FOUND.value: 404,
    ResolutionErrorCode.MARKET_ALREADY_TERMINAL.value: 409,
}


@app.on_event("startup")
def on_startup() -> None:
    """Create settlement tables when the API boots."""

    init_db()


@app.exception_handler(SettlementFailedError)
def settlement_failed_handler(request: Request, exc: SettlementFailedError) -> JSONResponse:
    """Report write failures as retryable; the market is still unresolved."""

    return JSONResponse(
        status_code=503,
        content={"success": False, "errors": [{"code": exc.code.value, "message": exc.message}]},
    )


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _resolution_service() -> ResolutionService:
    """Provide the resolution service wired to the settlement store."""

    return ResolutionService(SettlementRepository())


def _respond(result: ResolutionResult, response: Response) -> schemas.ResolutionResponse:
    if not result.success:
        codes = result.error_codes
        response.status_code = next(
            (_ERROR_STATUS[code] for code in codes if code in _ERROR_STATUS), 400
        )
    return schemas.ResolutionResponse.from_result(result)


@app.post(
    "/markets/{market_id}/resolve",
    response_model=schemas.ResolutionResponse,
    tags=["resolution"],
)
def resolve_market(
    market_id: str,
    payload: schemas.ResolveRequest,
    response: Response,
    service: ResolutionService = Depends(_resolution_service),
):
    """Settle a market, or only preview the settlement when ``preview`` is set."""

    if payload.preview:
        result = service.preview(market_id, payload.winning_outcome_id)
    else:
        result = service.resolve(
            market_id,
            payload.winning_outcome_id,
            payload.actual_value,
            resolved_by=payload.resolved_by,
            resolution_source=payload.resolution_source,
            resolution_notes=payload.resolution_notes,
        )
    return _respond(result, response)


@app.post(
    "/markets/{market_id}/preview",
    response_model=schemas.ResolutionResponse,
    tags=["resolution"],
)
def preview_market(
    market_id: str,
    payload: schemas.PreviewRequest,
    response: Response,
    service: ResolutionService = Depends(_resolution_service),
):
    """Show what resolving with ``winning_outcome_id`` would pay out, without writing anything."""

    return _respond(service.preview(market_id, payload.winning_outcome_id), response)


@app.get(
    "/markets/{market_id}/resolution",
    response_model=schemas.ResolutionDetails,
    tags=["resolution"],
)
def get_resolution(market_id: str, db=Depends(get_db)):
    record = crud.get_resolution_details(db, market_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Market is not resolved")
    return schemas.ResolutionDetails.model_validate(record)


@app.get(
    "/markets/{market_id}/ledger",
    response_model=schemas.LedgerEntryList,
    tags=["resolution"],
)
def list_market_ledger(market_id: str, db=Depends(get_db)):
    """Return every balance ledger entry written when ``market_id`` settled."""

    entries = [
        schemas.LedgerEntry.model_validate(entry)
        for entry in crud.list_market_entries(db, market_id)
    ]
    return schemas.LedgerEntryList(
        total=len(entries),
        total_credited=sum((entry.amount for entry in entries), Decimal("0")),
        items=entries,
    )


@app.get("/users/{user_id}/balance", response_model=schemas.UserBalance, tags=["users"])
def get_user_balance(user_id: str, db=Depends(get_db)):
    return schemas.UserBalance(
        user_id=user_id,
        balance=crud.get_user_balance(db, user_id),
        trendsetter_points=crud.get_user_trendsetter_points(db, user_id),
    )


@app.get(
    "/users/{user_id}/taste-matches",
    response_model=schemas.TasteMatchList,
    tags=["users"],
)
def list_taste_matches(
    user_id: str,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    db=Depends(get_db),
):
    """Return the users whose correct calls most often overlap with ``user_id``."""

    records = crud.list_user_taste_matches(db, user_id, limit=limit)
    items = [
        schemas.TasteMatch.model_validate(record).model_copy(
            update={
                "percentage": taste_match_percentage(record.score),
                "strength": taste_match_strength(record.score),
            }
        )
        for record in records
    ]
    return schemas.TasteMatchList(total=len(items), items=items)


@app.get("/bets/{bet_id}/payout", response_model=schemas.BetPayout, tags=["bets"])
def get_bet_payout(bet_id: str, db=Depends(get_db)):
    entries = crud.list_bet_entries(db, bet_id)
    if not entries:
        raise HTTPException(status_code=404, detail="No payout recorded for this bet")
    return schemas.BetPayout(
        bet_id=bet_id,
        total_credited=sum((entry.amount for entry in entries), Decimal("0")),
        entries=[schemas.LedgerEntry.model_validate(entry) for entry in entries],
    )
