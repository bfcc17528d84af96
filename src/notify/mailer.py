"""
Winner/seller email notification sent when an auction closes with a winner.
"""

import logging
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Callable, List, Optional

from auction.config import AuctionSettings
from auction.models import Auction, AuctionResult
from observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


class EmailNotifier:
    """
    Sends the two closing emails on a background worker.

    Each message is sent independently. Failures are logged and counted;
    nothing is retried and nothing is reported back to the auction core.
    """

    def __init__(
        self,
        settings: AuctionSettings,
        executor: Optional[ThreadPoolExecutor] = None,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        """
        Initialize notifier.

        Args:
            settings: SMTP host, port, credentials and sender
            executor: Worker pool (a single worker is created if None)
            smtp_factory: SMTP client constructor (host, port, timeout=...)
        """
        self.settings = settings
        self.smtp_factory = smtp_factory
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="auction-email"
        )

    @property
    def configured(self) -> bool:
        return self.settings.notifications_enabled

    def notify_auction_closed(self, auction: Auction, result: AuctionResult) -> Optional[Future]:
        """
        Schedule the seller and winner emails.

        Returns:
            Future for the send, or None when nothing is sent
        """
        if not self.configured:
            logger.info("[EMAIL] SMTP not configured, skipping email notifications")
            return None
        if not result.has_winner:
            return None

        messages = self.build_messages(auction, result)
        return self._executor.submit(self._send_all, messages)

    def build_messages(self, auction: Auction, result: AuctionResult) -> List[EmailMessage]:
        """Seller message first, winner message second"""
        winner = result.winner
        seller = auction.seller
        amount = f"${result.final_amount:.2f}"

        seller_msg = EmailMessage()
        seller_msg["From"] = self.settings.mail_from
        seller_msg["To"] = seller.contact
        seller_msg["Subject"] = f"Auction Ended - {result.item_name}"
        seller_msg.set_content(
            f"Dear {seller.name},\n\n"
            f"Your auction for {result.item_name} has ended.\n\n"
            f"Winning bid: {amount}\n"
            f"Winner: {winner.name}\n"
            f"Winner's email: {winner.contact}\n\n"
            "Please contact the winner to complete the transaction.\n"
        )

        winner_msg = EmailMessage()
        winner_msg["From"] = self.settings.mail_from
        winner_msg["To"] = winner.contact
        winner_msg["Subject"] = f"Congratulations! You Won - {result.item_name}"
        winner_msg.set_content(
            f"Dear {winner.name},\n\n"
            f"You have won the auction for {result.item_name}!\n\n"
            f"Your winning bid: {amount}\n"
            f"Seller: {seller.name}\n"
            f"Seller's email: {seller.contact}\n\n"
            "The seller will contact you soon to complete the transaction.\n"
        )

        return [seller_msg, winner_msg]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _send_all(self, messages: List[EmailMessage]) -> int:
        """Returns the number of messages handed to the relay"""
        sent = 0
        for message in messages:
            try:
                self._send(message)
                sent += 1
                logger.info(f"[EMAIL] Sent '{message['Subject']}' to {message['To']}")
            except (smtplib.SMTPException, OSError) as e:
                metrics_collector.record_notification_failed("email")
                logger.error(f"[EMAIL] Failed to send '{message['Subject']}' to {message['To']}: {e}")
        return sent

    def _send(self, message: EmailMessage) -> None:
        settings = self.settings
        with self.smtp_factory(settings.smtp_host, settings.smtp_port, timeout=10) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_username:
                smtp.login(settings.smtp_username, settings.smtp_password or "")
            smtp.send_message(message)
