"""Unit tests for notification sinks."""

import logging
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from building_finance.services.notification_service import (
    LoggingNotificationService,
    NotificationService,
    TelegramNotificationService,
    create_notification_service,
    notify_safely,
)


def make_demand(**overrides):
    values = dict(
        flat_number="1A",
        quarter_display_string="Q1 FY24/25",
        total_due=Decimal("2800.00"),
        ground_rent_amount=Decimal("300.00"),
        outstanding=Decimal("1800.00"),
        due_date=date(2024, 3, 18),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_flat(telegram_id=5001):
    return SimpleNamespace(flat_number="1A", contact_telegram_id=telegram_id)


class TestMessages:
    """Test message text for each event."""

    async def test_demand_issued_mentions_amount_and_ground_rent(self):
        sink = LoggingNotificationService()
        sink.deliver = AsyncMock()

        await sink.notify_demand_issued(make_flat(), make_demand())

        text = sink.deliver.await_args.args[1]
        assert "Q1 FY24/25" in text
        assert "£2,800.00" in text
        assert "18 Mar 2024" in text
        assert "ground rent of £300.00" in text

    async def test_demand_issued_without_ground_rent(self):
        sink = LoggingNotificationService()
        sink.deliver = AsyncMock()

        await sink.notify_demand_issued(make_flat(), make_demand(ground_rent_amount=Decimal("0")))

        assert "ground rent" not in sink.deliver.await_args.args[1]

    async def test_reminder_mentions_outstanding(self):
        sink = LoggingNotificationService()
        sink.deliver = AsyncMock()

        await sink.notify_payment_reminder(make_flat(), make_demand())

        assert "£1,800.00 is outstanding" in sink.deliver.await_args.args[1]

    async def test_penalty_message(self):
        sink = LoggingNotificationService()
        sink.deliver = AsyncMock()

        await sink.notify_penalty_applied(make_flat(), make_demand(), Decimal("50"))

        assert "penalty of £50.00" in sink.deliver.await_args.args[1]

    async def test_logging_sink_writes_log(self, caplog):
        with caplog.at_level(logging.INFO):
            await LoggingNotificationService().deliver(make_flat(), "hello")

        assert "Notification for flat 1A: hello" in caplog.text


class TestTelegramSink:
    """Test Telegram delivery."""

    async def test_sends_to_flat_contact(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await TelegramNotificationService(bot).deliver(make_flat(5001), "hello")

        bot.send_message.assert_awaited_once_with(chat_id=5001, text="hello")

    async def test_skips_flat_without_contact(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await TelegramNotificationService(bot).deliver(make_flat(None), "hello")

        bot.send_message.assert_not_awaited()

    def test_factory_chooses_sink(self):
        assert isinstance(create_notification_service(None), LoggingNotificationService)
        assert isinstance(
            create_notification_service("123456:ABC-DEF"), TelegramNotificationService
        )


class TestNotifySafely:
    """Test fire-and-forget delivery."""

    async def test_success(self):
        sink = AsyncMock(spec=NotificationService)

        assert await notify_safely(sink, "payment_reminder", make_flat(), make_demand()) is True
        sink.notify_payment_reminder.assert_awaited_once()

    async def test_failure_is_logged_not_raised(self, caplog):
        sink = AsyncMock(spec=NotificationService)
        sink.notify_demand_issued.side_effect = RuntimeError("network down")

        with caplog.at_level(logging.ERROR):
            delivered = await notify_safely(sink, "demand_issued", make_flat(), make_demand())

        assert delivered is False
        assert "Notification 'demand_issued' failed" in caplog.text
