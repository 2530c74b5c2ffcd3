"""Notification sinks for demand issue, reminder and penalty messages.

Delivery is fire-and-forget: callers go through ``notify_safely`` so a failed
delivery is logged and never undoes the billing action that triggered it.
"""

import logging
from decimal import Decimal
from typing import Any

from telegram import Bot

from building_finance.services.locale_service import format_amount, format_day

logger = logging.getLogger(__name__)


class NotificationService:
    """Base notification sink. Subclasses implement ``deliver``."""

    async def deliver(self, flat: Any, text: str) -> None:
        raise NotImplementedError

    async def notify_demand_issued(self, flat: Any, demand: Any) -> None:
        """Tell the flat's contact a new demand was issued."""
        text = (
            f"Service charge demand for flat {demand.flat_number}, {demand.quarter_display_string}: "
            f"{format_amount(demand.total_due)} due by {format_day(demand.due_date)}."
        )
        if demand.ground_rent_amount > 0:
            text += f" Includes annual ground rent of {format_amount(demand.ground_rent_amount)}."
        await self.deliver(flat, text)

    async def notify_payment_reminder(self, flat: Any, demand: Any) -> None:
        """Remind the flat's contact about an unpaid balance."""
        text = (
            f"Reminder: {format_amount(demand.outstanding)} is outstanding on the "
            f"{demand.quarter_display_string} service charge for flat {demand.flat_number} "
            f"(due {format_day(demand.due_date)})."
        )
        await self.deliver(flat, text)

    async def notify_penalty_applied(self, flat: Any, demand: Any, penalty: Decimal) -> None:
        """Tell the flat's contact a late payment penalty was added."""
        text = (
            f"A penalty of {format_amount(penalty)} has been applied to your service charge "
            f"for {demand.quarter_display_string}. New outstanding amount: "
            f"{format_amount(demand.outstanding)}."
        )
        await self.deliver(flat, text)


class LoggingNotificationService(NotificationService):
    """Writes notifications to the log. Used when no delivery channel is configured."""

    async def deliver(self, flat: Any, text: str) -> None:
        logger.info("Notification for flat %s: %s", getattr(flat, "flat_number", "?"), text)


class TelegramNotificationService(NotificationService):
    """Sends notifications to the flat contact's Telegram chat."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def deliver(self, flat: Any, text: str) -> None:
        chat_id = getattr(flat, "contact_telegram_id", None)
        if not chat_id:
            logger.debug("Flat %s has no Telegram contact; skipping", flat.flat_number)
            return
        await self.bot.send_message(chat_id=int(chat_id), text=text)


async def notify_safely(sink: NotificationService, event: str, *args: Any) -> bool:
    """Invoke ``sink.notify_<event>(*args)``; log and swallow delivery failures.

    Returns:
        True if the sink accepted the notification
    """
    handler = getattr(sink, f"notify_{event}")
    try:
        await handler(*args)
        return True
    except Exception as e:
        logger.error("Notification '%s' failed: %s", event, e, exc_info=True)
        return False


def create_notification_service(telegram_bot_token: str | None) -> NotificationService:
    """Telegram delivery when a bot token is configured, otherwise log only."""
    if telegram_bot_token:
        return TelegramNotificationService(Bot(token=telegram_bot_token))
    return LoggingNotificationService()


__all__ = [
    "NotificationService",
    "LoggingNotificationService",
    "TelegramNotificationService",
    "notify_safely",
    "create_notification_service",
]
