"""
FastAPI endpoints for the auction service.

Provides REST API for creating auctions, bidding, bid history and manual
closure, plus the real-time WebSocket channel.
"""

import argparse
import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, Query, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.realtime import auction_socket
from api.schemas import (
    AuctionResponse,
    AuctionResultResponse,
    BidHistoryResponse,
    BidRecord,
    CreateAuctionRequest,
    CreateAuctionResponse,
    ErrorResponse,
    PlaceBidRequest,
    PlaceBidResponse,
)
from auction.errors import (
    AuctionClosedError,
    AuctionError,
    BidTooLowError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from auction.service import AuctionService
from observability.metrics import setup_metrics_endpoint_fastapi

logger = logging.getLogger(__name__)


_STATUS_CODES = {
    ValidationError: 400,
    BidTooLowError: 400,
    NotFoundError: 404,
    AuctionClosedError: 409,
    StoreUnavailableError: 503,
}


def _errors(*status_codes: int) -> Dict[int, dict]:
    """OpenAPI entries for the error bodies a route can return"""
    return {code: {"model": ErrorResponse} for code in status_codes}


def create_app(service: AuctionService) -> FastAPI:
    """
    Build the API around an already wired service.

    Args:
        service: AuctionService (started by the caller)
    """
    app = FastAPI(title="Auction API", version="1.0.0")
    app.state.service = service
    machine = service.machine

    @app.exception_handler(AuctionError)
    async def auction_error_handler(request: Request, exc: AuctionError):
        body = ErrorResponse(error=str(exc))
        if isinstance(exc, BidTooLowError):
            body.minimum_bid = str(exc.minimum)
        status_code = _STATUS_CODES.get(type(exc), 500)
        if status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else "body"
        message = errors[0]["msg"] if errors else "invalid request"
        body = ErrorResponse(error=f"{field}: {message}")
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))

    @app.post(
        "/api/auctions",
        response_model=CreateAuctionResponse,
        status_code=201,
        responses=_errors(400, 503),
    )
    def create_auction(request: CreateAuctionRequest):
        """Create a new auction"""
        auction_id = machine.create_auction(
            item=request.item(),
            starting_price=request.starting_price,
            bid_increment=request.bid_increment,
            duration=request.duration,
            seller=request.seller(),
        )
        view = machine.get_auction(auction_id)
        return CreateAuctionResponse(auction_id=auction_id, auction=AuctionResponse.from_view(view))

    @app.get("/api/auctions/active", response_model=List[AuctionResponse], responses=_errors(503))
    def list_active_auctions():
        """List active auctions, newest first"""
        return [AuctionResponse.from_view(view) for view in machine.list_active_auctions()]

    @app.get(
        "/api/auctions/{auction_id}", response_model=AuctionResponse, responses=_errors(404, 503)
    )
    def get_auction(auction_id: str):
        """Get auction details with the live highest bid"""
        return AuctionResponse.from_view(machine.get_auction(auction_id))

    @app.get(
        "/api/auctions/{auction_id}/bids",
        response_model=BidHistoryResponse,
        responses=_errors(400, 404, 503),
    )
    def list_bids(auction_id: str, limit: Optional[int] = Query(None, ge=1)):
        """Bid history, most recent first"""
        bids = machine.list_bids(auction_id, limit)
        return BidHistoryResponse(
            auction_id=auction_id, bids=[BidRecord.from_bid(bid) for bid in bids]
        )

    @app.post(
        "/api/auctions/{auction_id}/bids",
        response_model=PlaceBidResponse,
        responses=_errors(400, 404, 409, 503),
    )
    def place_bid(auction_id: str, request: PlaceBidRequest):
        """Place a bid"""
        receipt = machine.submit_bid(auction_id, request.amount, request.bidder())
        return PlaceBidResponse(
            bid=BidRecord.from_bid(receipt.bid), minimum_bid=str(receipt.next_minimum)
        )

    @app.post(
        "/api/auctions/{auction_id}/end",
        response_model=AuctionResultResponse,
        responses=_errors(404, 503),
    )
    def end_auction(auction_id: str):
        """Close an auction now; repeated calls return the same result"""
        result = machine.close_auction(auction_id, trigger="manual")
        return AuctionResultResponse(
            auction_id=result.auction_id,
            item_name=result.item_name,
            winner=result.winner.name if result.winner else None,
            final_amount=str(result.final_amount),
            closed_at=result.closed_at,
        )

    @app.get("/api/debug")
    def debug():
        """Cache connection status and settings summary"""
        return {
            "cache": service.cache.status(),
            "settings": service.settings.describe(),
            "pending_timers": len(service.scheduler.pending()),
            "sweeper_running": service.sweeper.running,
        }

    @app.get("/health")
    def health():
        """Health check"""
        return {"status": "healthy", "cache_backend": service.cache.backend}

    @app.websocket("/ws/auctions/{auction_id}")
    async def auction_updates(websocket: WebSocket, auction_id: str):
        await auction_socket(websocket, service, auction_id)

    setup_metrics_endpoint_fastapi(app)

    return app


def main():
    """Main entry point"""
    import uvicorn

    from auction.config import AuctionSettings
    from observability.tracing import setup_tracing, shutdown_tracing

    settings = AuctionSettings.from_env()

    parser = argparse.ArgumentParser(description="Timed auction service")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port")
    parser.add_argument("--db", default=settings.database_path, help="Ledger database path")
    parser.add_argument("--redis-url", default=settings.redis_url, help="Redis URL for the shared cache")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    parser.add_argument("--trace-console", action="store_true", help="Export spans to the console")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings.database_path = args.db
    settings.redis_url = args.redis_url or None
    settings.validate()

    if settings.otlp_endpoint or args.trace_console:
        setup_tracing("auction-core", settings.otlp_endpoint, console_export=args.trace_console)

    service = AuctionService.from_settings(settings)
    service.start()
    logger.info(f"Starting auction API on {args.host}:{args.port}")

    try:
        uvicorn.run(create_app(service), host=args.host, port=args.port)
    finally:
        service.stop()
        shutdown_tracing()


if __name__ == "__main__":
    main()
