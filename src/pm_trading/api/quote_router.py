"""Quote REST endpoints (stateless, no auth).

POST /quotes/probability   implied YES probability of a cpmm-1 pool
POST /quotes/bet           fills, fees and new pool for a prospective bet
"""

from fastapi import APIRouter, Request

from src.pm_common.response import ApiResponse, success_response
from src.pm_trading.application import quote_service
from src.pm_trading.application.schemas import BetQuoteRequest, ProbabilityQuoteRequest

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.post("/probability")
async def quote_probability(body: ProbabilityQuoteRequest, request: Request) -> ApiResponse:
    result = quote_service.quote_probability(body)
    resp = success_response(result.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/bet")
async def quote_bet(body: BetQuoteRequest, request: Request) -> ApiResponse:
    result = quote_service.quote_bet(body)
    resp = success_response(result.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp
