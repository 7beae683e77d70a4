"""Tests for typed events and the event channel."""

import asyncio

from creative_orchestrator.events import (
    CompleteEvent,
    EventChannel,
    HeartbeatEvent,
    PhaseEvent,
    UnitAssetProgressEvent,
    ThoughtEvent,
    progress_event_adapter,
)


class TestEventModels:
    def test_discriminated_round_trip(self):
        event = CompleteEvent(artifact_url="file:///tmp/deck.md", succeeded_units=[0, 1], failed_units=[2])
        parsed = progress_event_adapter.validate_json(event.model_dump_json())
        assert isinstance(parsed, CompleteEvent)
        assert parsed.failed_units == [2]

    def test_type_field_set(self):
        assert PhaseEvent(name="plan").type == "phase"
        assert HeartbeatEvent(elapsed_seconds=30.0).type == "heartbeat"


class TestEventChannel:
    """Test ordering, advisory drops and close semantics."""

    async def test_events_delivered_in_order_until_close(self):
        channel = EventChannel(maxsize=10)
        await channel.publish(PhaseEvent(name="plan"))
        await channel.publish(PhaseEvent(name="assemble"))
        await channel.close()

        names = [event.name async for event in channel]
        assert names == ["plan", "assemble"]

    async def test_advisory_events_dropped_when_full(self):
        channel = EventChannel(maxsize=2)
        await channel.publish(PhaseEvent(name="plan"))
        await channel.publish(ThoughtEvent(text="thinking"))
        await channel.publish(ThoughtEvent(text="dropped"))
        await channel.publish(HeartbeatEvent(elapsed_seconds=30))

        assert channel.dropped == 2
        queued = channel.drain_nowait()
        assert [e.type for e in queued] == ["phase", "thought"]

    async def test_non_advisory_events_wait_for_space(self):
        channel = EventChannel(maxsize=1)
        await channel.publish(PhaseEvent(name="plan"))
        blocked = asyncio.create_task(channel.publish(PhaseEvent(name="generate_assets")))
        await asyncio.sleep(0.01)
        assert not blocked.done()

        channel.drain_nowait()
        await asyncio.wait_for(blocked, timeout=1)
        assert [e.name for e in channel.drain_nowait()] == ["generate_assets"]
        assert channel.dropped == 0

    async def test_publish_after_close_is_ignored(self):
        channel = EventChannel(maxsize=5)
        await channel.close()
        await channel.publish(PhaseEvent(name="late"))
        assert channel.drain_nowait() == []

    async def test_progress_events_are_advisory(self):
        channel = EventChannel(maxsize=1)
        await channel.publish(PhaseEvent(name="generate_assets"))
        await asyncio.wait_for(
            channel.publish(UnitAssetProgressEvent(unit_index=0, stage="video", progress=40)),
            timeout=1
        )
        assert channel.dropped == 1

    async def test_close_on_full_channel_does_not_wait(self):
        channel = EventChannel(maxsize=2)
        await channel.publish(PhaseEvent(name="plan"))
        await channel.publish(PhaseEvent(name="assemble"))

        await asyncio.wait_for(channel.close(), timeout=1)

        names = [event.name async for event in channel]
        assert names == ["plan", "assemble"]

    async def test_close_wakes_waiting_consumer(self):
        channel = EventChannel(maxsize=2)
        consumer = asyncio.create_task(self._collect(channel))
        await asyncio.sleep(0.01)

        await channel.close()

        assert await asyncio.wait_for(consumer, timeout=1) == []

    @staticmethod
    async def _collect(channel):
        return [event async for event in channel]
