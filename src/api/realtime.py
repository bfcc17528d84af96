"""
Real-time boundary: bridges WebSocket clients to the notification fan-out.

Each connection joins its auction's topic. Fan-out callbacks run on the
thread that changed the auction, so events cross into the event loop
through call_soon_threadsafe. Bids submitted over the socket run on a
worker thread and complete even if the client disconnects mid-flight.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from auction.errors import AuctionError, BidTooLowError
from auction.models import Party
from notify.fanout import AuctionEvent

logger = logging.getLogger(__name__)


def bid_error_message(auction_id: str, error: AuctionError) -> Dict[str, Any]:
    """Outbound bidError payload; minimumBid only for too-low bids"""
    message: Dict[str, Any] = {
        "type": "bidError",
        "auctionId": auction_id,
        "reason": str(error),
    }
    if isinstance(error, BidTooLowError):
        message["minimumBid"] = str(error.minimum)
    return message


class AuctionSocket:
    """One WebSocket connection subscribed to one auction"""

    def __init__(self, websocket: WebSocket, service, auction_id: str):
        self.websocket = websocket
        self.service = service
        self.auction_id = auction_id
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def run(self) -> None:
        # Subscribe before accepting so no event after the handshake is missed
        self._loop = asyncio.get_running_loop()
        subscription = self.service.fanout.subscribe(self.auction_id, self._on_event)
        sender = None

        try:
            await self.websocket.accept()
            sender = asyncio.create_task(self._pump())
            logger.info(f"[REALTIME] Client joined auction_{self.auction_id}")
            while True:
                text = await self.websocket.receive_text()
                try:
                    data = json.loads(text)
                except ValueError:
                    self._reject("Malformed message")
                    continue
                await self._handle(data)
        except WebSocketDisconnect:
            logger.info(f"[REALTIME] Client left auction_{self.auction_id}")
        finally:
            self.service.fanout.unsubscribe(subscription)
            if sender is not None:
                sender.cancel()

    def _on_event(self, event: AuctionEvent) -> None:
        self._loop.call_soon_threadsafe(self.queue.put_nowait, event.to_message())

    async def _pump(self) -> None:
        while True:
            message = await self.queue.get()
            await self.websocket.send_json(message)

    def _reject(self, reason: str) -> None:
        self.queue.put_nowait({"type": "bidError", "auctionId": self.auction_id, "reason": reason})

    async def _handle(self, data: Any) -> None:
        if not isinstance(data, dict) or data.get("type") != "placeBid":
            self._reject("Unsupported message")
            return

        # A socket only bids on the auction it joined
        if data.get("auctionId") not in (None, self.auction_id):
            logger.warning(
                f"[REALTIME] Rejected bid for {data.get('auctionId')} on auction_{self.auction_id} channel"
            )
            self._reject("Auction mismatch")
            return

        auction_id = self.auction_id
        bidder = Party(name=data.get("bidderName"), contact=data.get("bidderContact"))
        loop = asyncio.get_running_loop()
        try:
            # The worker thread finishes the bid even if this coroutine is cancelled
            await loop.run_in_executor(
                None, self.service.machine.submit_bid, auction_id, data.get("amount"), bidder
            )
        except AuctionError as e:
            self.queue.put_nowait(bid_error_message(auction_id, e))


async def auction_socket(websocket: WebSocket, service, auction_id: str) -> None:
    await AuctionSocket(websocket, service, auction_id).run()
