from __future__ import annotations

import pytest

from visual_sync.channel import Channel, ChannelError
from visual_sync.constants import BUILD_STARTED, IS_OUTDATED


class TestOwnership:
    def test_second_owner_is_rejected(self):
        channel = Channel()
        channel.claim(BUILD_STARTED, "trigger")
        with pytest.raises(ChannelError, match="already has an owner"):
            channel.claim(BUILD_STARTED, "someone-else")

    @pytest.mark.asyncio
    async def test_only_owner_may_emit(self):
        channel = Channel()
        channel.claim(IS_OUTDATED, "session")
        with pytest.raises(ChannelError):
            channel.emit(IS_OUTDATED, True, owner="panel")

    @pytest.mark.asyncio
    async def test_released_event_can_be_claimed_again(self):
        channel = Channel()
        channel.claim(IS_OUTDATED, "first")
        channel.release(IS_OUTDATED, "first")
        channel.claim(IS_OUTDATED, "second")
        channel.emit(IS_OUTDATED, False, owner="second")
        await channel.flush()


class TestDelivery:
    @pytest.mark.asyncio
    async def test_delivery_is_not_inline(self):
        channel = Channel()
        received = []
        channel.on(IS_OUTDATED, received.append)

        channel.emit(IS_OUTDATED, True)
        assert received == []

        await channel.flush()
        assert received == [True]

    @pytest.mark.asyncio
    async def test_off_stops_delivery(self):
        channel = Channel()
        received = []
        off = channel.on(IS_OUTDATED, received.append)
        off()

        channel.emit(IS_OUTDATED, True)
        await channel.flush()
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        channel = Channel()
        received = []

        def broken(payload):
            raise RuntimeError("listener bug")

        async def working(payload):
            received.append(payload)

        channel.on(IS_OUTDATED, broken)
        channel.on(IS_OUTDATED, working)
        channel.emit(IS_OUTDATED, False)
        await channel.flush()

        assert received == [False]
