"""
Tests for the websocket connection registry and notification delivery.
"""

from orrbit.notifications.connection_manager import ConnectionManager
from orrbit.notifications.notification_service import NotificationService, PendingPush
from orrbit.notifications.schemas import NotificationMessage, RenewalReminderPayload, parse_payload
from tests.conftest import NOW, FakeConnection


def message(text="hello"):
    return NotificationMessage(data={"message": text})


class TestConnectionManager:

    async def test_send_reaches_every_connection_of_user(self):
        manager = ConnectionManager()
        phone, laptop, other = FakeConnection(), FakeConnection(), FakeConnection()
        manager.register(1, phone)
        manager.register(1, laptop)
        manager.register(2, other)

        sent = await manager.send(1, message())

        assert sent == 2
        assert len(phone.frames) == 1
        assert phone.frames[0]["type"] == "notification"
        assert other.frames == []

    async def test_send_to_offline_user(self):
        assert await ConnectionManager().send(42, message()) == 0

    async def test_failed_handle_is_dropped(self):
        manager = ConnectionManager()
        healthy, broken = FakeConnection(), FakeConnection(fail=True)
        manager.register(1, healthy)
        manager.register(1, broken)

        sent = await manager.send(1, message())

        assert sent == 1
        assert manager.total_connections == 1
        assert manager.stats()["send_failures"] == 1

    def test_unregister_last_connection(self):
        manager = ConnectionManager()
        connection = FakeConnection()
        manager.register(1, connection)

        manager.unregister(1, connection)
        manager.unregister(1, connection)

        assert not manager.is_connected(1)
        assert manager.stats()["connected_users"] == 0


class TestNotificationService:

    async def test_dispatch_skips_deduplicated(self):
        manager = ConnectionManager()
        connection = FakeConnection()
        manager.register(1, connection)
        service = NotificationService(manager)

        delivered = await service.dispatch([
            None,
            PendingPush(user_id=1, notification_id=10, message=message("first")),
        ])

        assert delivered == 1
        assert connection.frames[0]["data"]["message"] == "first"

    async def test_reminder_dedup_key_is_stable(self, session_factory, seed):
        service = NotificationService(ConnectionManager())
        payload = RenewalReminderPayload(
            subscription_id=1, creator_id=seed.creator_id, days_until=1, amount="10", next_billing_at=NOW,
        )

        async with session_factory() as session:
            async with session.begin():
                first = await service.record(session, seed.subscriber_id, payload)
                second = await service.record(session, seed.subscriber_id, payload)

        assert first is not None
        assert second is None
        assert payload.dedup_key() == "renewal_reminder:1:1:2026-03-10"

    def test_stored_payload_parses_back(self):
        payload = RenewalReminderPayload(
            subscription_id=3, creator_id=4, days_until=3, amount="12.5", next_billing_at=NOW,
        )

        parsed = parse_payload(payload.model_dump(mode="json"))

        assert isinstance(parsed, RenewalReminderPayload)
        assert parsed.days_until == 3
        assert parsed.message() == "Your subscription renews in 3 days for 12.5 XLM"
