"""Unit tests for the change feed."""
import pytest

from tradedesk.core.models import ChangeEventType
from tradedesk.realtime.changes import ChangeEvent, ChangeFeed


def holding_change(user_id="alice", event=ChangeEventType.UPDATE, table="portfolio_holdings"):
    return ChangeEvent(table=table, event=event, record={"user_id": user_id, "asset_id": "a"})


class TestSubscriptions:
    """Test subscription matching."""

    def test_table_filter(self):
        feed = ChangeFeed()
        received = []
        feed.subscribe("portfolio_holdings", received.append)

        feed.publish(holding_change())
        feed.publish(holding_change(table="orders"))

        assert len(received) == 1

    def test_event_filter(self):
        feed = ChangeFeed()
        received = []
        feed.subscribe("portfolio_holdings", received.append, event="INSERT")

        feed.publish(holding_change(event=ChangeEventType.UPDATE))
        feed.publish(holding_change(event=ChangeEventType.INSERT))

        assert [c.event for c in received] == [ChangeEventType.INSERT]

    def test_column_filter(self):
        feed = ChangeFeed()
        received = []
        feed.subscribe("portfolio_holdings", received.append, filter={"user_id": "alice"})

        feed.publish(holding_change(user_id="bob"))
        feed.publish(holding_change(user_id="alice"))

        assert [c.record["user_id"] for c in received] == ["alice"]

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            ChangeFeed().subscribe("orders", lambda change: None, event="UPSERT")

    def test_unsubscribe(self):
        feed = ChangeFeed()
        received = []
        subscription = feed.subscribe("portfolio_holdings", received.append)

        feed.unsubscribe(subscription)
        feed.publish(holding_change())

        assert received == []
        assert feed.subscriber_count == 0

    def test_failing_callback_does_not_stop_delivery(self):
        feed = ChangeFeed()
        received = []

        def broken(change):
            raise RuntimeError("subscriber bug")

        feed.subscribe("portfolio_holdings", broken)
        feed.subscribe("portfolio_holdings", received.append)

        feed.publish(holding_change())

        assert len(received) == 1


class TestAsyncCallbacks:
    """Test coroutine subscribers."""

    @pytest.mark.asyncio
    async def test_async_callback_is_scheduled(self):
        feed = ChangeFeed()
        received = []

        async def on_change(change):
            received.append(change)

        feed.subscribe("portfolio_holdings", on_change)
        feed.publish(holding_change())

        assert len(feed.pending_callbacks()) == 1
        await feed.drain()

        assert len(received) == 1
        assert feed.pending_callbacks() == []

    @pytest.mark.asyncio
    async def test_async_callback_error_is_contained(self):
        feed = ChangeFeed()

        async def broken(change):
            raise RuntimeError("subscriber bug")

        feed.subscribe("portfolio_holdings", broken)
        feed.publish(holding_change())

        await feed.drain()

        assert feed.pending_callbacks() == []
