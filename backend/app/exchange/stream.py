"""HTTP endpoints for the market overview and SSE streaming of offer books."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Mapping

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .book import OfferBook
from .overview import MarketOverview, SortKey

logger = logging.getLogger(__name__)


def create_exchange_router(overview: MarketOverview, books: Mapping[str, OfferBook]) -> APIRouter:
    """Create the exchange router bound to an overview and the live offer books.

    books maps token id to its OfferBook; the caller owns both and may add
    books to the mapping after the router is created.
    """
    router = APIRouter(prefix="/api", tags=["exchange"])

    def _book_or_404(asset_id: str) -> OfferBook:
        book = books.get(asset_id)
        if book is None:
            raise HTTPException(status_code=404, detail=f"No offer book for token {asset_id}")
        return book

    @router.get("/overview")
    async def list_tokens(
        sort: SortKey = SortKey.MARKET_CAP,
        offset: int = Query(0, ge=0),
        limit: int = Query(50, ge=1, le=500),
        ascending: bool = False,
    ) -> dict:
        """One page of the market overview."""
        tokens = overview.list_sorted(sort, offset=offset, limit=limit, ascending=ascending)
        return {"total": len(overview), "tokens": [token.to_dict() for token in tokens]}

    @router.get("/overview/search")
    async def search_tokens(q: str = Query(..., min_length=1)) -> dict:
        return {"tokens": [token.to_dict() for token in overview.search(q)]}

    @router.get("/overview/status")
    async def overview_status() -> dict:
        return overview.to_dict()["sources"]

    @router.get("/assets/{asset_id}")
    async def asset_details(asset_id: str) -> dict:
        details = overview.asset_metadata(asset_id)
        if details is None:
            raise HTTPException(status_code=404, detail=f"Unknown token {asset_id}")
        summary = overview.summary(asset_id)
        return {
            "details": details.to_dict(),
            "summary": summary.to_dict() if summary else None,
        }

    @router.get("/offers/{asset_id}")
    async def list_offers(asset_id: str) -> dict:
        book = _book_or_404(asset_id)
        return {"token_id": asset_id, "offers": [offer.to_dict() for offer in book.current_offers()]}

    @router.get("/stream/offers/{asset_id}")
    async def stream_offers(asset_id: str, request: Request) -> StreamingResponse:
        """SSE endpoint streaming the full offer list of a token whenever it changes.

            data: {"token_id": "...", "offers": [{"txid": ..., "price_per_unit": ...}, ...]}
        """
        book = _book_or_404(asset_id)
        return StreamingResponse(
            _generate_events(book, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return router


async def _generate_events(
    book: OfferBook,
    request: Request,
    interval: float = 0.5,
) -> AsyncGenerator[str, None]:
    """Yield the book's offers as SSE events each time its version changes.

    Stops when the client disconnects.
    """
    yield "retry: 1000\n\n"

    last_version = -1
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected to %s: %s", book.asset_id, client_ip)

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            current_version = book.version
            if current_version != last_version:
                last_version = current_version
                payload = json.dumps(
                    {
                        "token_id": book.asset_id,
                        "offers": [offer.to_dict() for offer in book.current_offers()],
                    }
                )
                yield f"data: {payload}\n\n"

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
