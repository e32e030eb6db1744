"""
Tests for the room registry: identifier policy, membership and expiry.
"""

import asyncio

import pytest

from conftest import FakeConnection, SequenceRandom
from expiry import EXPIRED_CLOSE_REASON
from registry import RoomIdsExhausted, RoomNotFound


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_room_adds_creator_with_four_digit_id(self, registry, make_connection):
        creator = make_connection()

        snapshot = await registry.create_room(creator)

        assert snapshot.room_id.isdigit() and len(snapshot.room_id) == 4
        assert 1000 <= int(snapshot.room_id) <= 9999
        assert snapshot.connection_id == creator.id
        assert snapshot.member_count == 1
        assert creator.room_id == snapshot.room_id
        assert [m.id for m in await registry.members_of(snapshot.room_id)] == [creator.id]

    @pytest.mark.asyncio
    async def test_created_ids_are_unique_among_live_rooms(self, registry, make_connection):
        room_ids = [(await registry.create_room(make_connection())).room_id for _ in range(200)]

        assert len(set(room_ids)) == 200
        assert registry.room_count() == 200

    @pytest.mark.asyncio
    async def test_collision_regenerates_instead_of_merging(self, make_registry, make_connection):
        registry = make_registry(id_min=1000, id_max=1001, rng=SequenceRandom([1000, 1000, 1001]))
        first, second = make_connection(), make_connection()

        first_room = await registry.create_room(first)
        second_room = await registry.create_room(second)

        assert first_room.room_id == "1000"
        assert second_room.room_id == "1001"
        assert [m.id for m in await registry.members_of("1000")] == [first.id]

    @pytest.mark.asyncio
    async def test_falls_back_to_free_ids_when_draws_keep_colliding(self, make_registry, make_connection):
        registry = make_registry(id_min=1000, id_max=1002, rng=SequenceRandom([1000]))

        await registry.create_room(make_connection())
        snapshot = await registry.create_room(make_connection())

        assert snapshot.room_id in {"1001", "1002"}

    @pytest.mark.asyncio
    async def test_exhausted_id_space_raises(self, make_registry, make_connection):
        registry = make_registry(id_min=1000, id_max=1000)
        owner, latecomer = make_connection(), make_connection()
        await registry.create_room(owner)

        with pytest.raises(RoomIdsExhausted):
            await registry.create_room(latecomer)

        assert latecomer.room_id is None
        assert [m.id for m in await registry.members_of("1000")] == [owner.id]

    @pytest.mark.asyncio
    async def test_create_or_extend_existing_room_adds_member(self, registry, make_connection):
        a, b = make_connection(), make_connection()

        await registry.create_or_extend("4321", a)
        snapshot = await registry.create_or_extend("4321", b)

        assert snapshot.member_count == 2
        assert registry.room_count() == 1


class TestJoin:

    @pytest.mark.asyncio
    async def test_join_missing_room_raises_and_leaves_connection_roomless(self, registry, make_connection):
        connection = make_connection()

        with pytest.raises(RoomNotFound) as exc_info:
            await registry.join("9999", connection)

        assert exc_info.value.room_id == "9999"
        assert connection.room_id is None
        assert registry.room_count() == 0

    @pytest.mark.asyncio
    async def test_join_adds_member_idempotently(self, registry, make_connection):
        creator, joiner = make_connection(), make_connection()
        room_id = (await registry.create_room(creator)).room_id

        await registry.join(room_id, joiner)
        snapshot = await registry.join(room_id, joiner)

        assert snapshot.member_count == 2
        assert joiner.room_id == room_id

    @pytest.mark.asyncio
    async def test_join_moves_connection_out_of_previous_room(self, registry, make_connection):
        a, b = make_connection(), make_connection()
        first = (await registry.create_room(a)).room_id
        second = (await registry.create_room(b)).room_id

        await registry.join(second, a)

        assert a.room_id == second
        assert await registry.members_of(first) == []
        assert {m.id for m in await registry.members_of(second)} == {a.id, b.id}


class TestRemoveMember:

    @pytest.mark.asyncio
    async def test_remove_member_twice_matches_once(self, registry, make_connection):
        a, b = make_connection(), make_connection()
        room_id = (await registry.create_room(a)).room_id
        await registry.join(room_id, b)

        await registry.remove_member(room_id, b)
        after_once = [m.id for m in await registry.members_of(room_id)]
        await registry.remove_member(room_id, b)
        after_twice = [m.id for m in await registry.members_of(room_id)]

        assert after_once == after_twice == [a.id]
        assert b.room_id is None

    @pytest.mark.asyncio
    async def test_remove_member_keeps_empty_room_alive(self, registry, make_connection):
        a = make_connection()
        room_id = (await registry.create_room(a)).room_id

        await registry.remove_member(room_id, a)

        room = await registry.get_room(room_id)
        assert room is not None
        assert room.member_count == 0

    @pytest.mark.asyncio
    async def test_remove_member_from_missing_room_is_noop(self, registry, make_connection):
        await registry.remove_member("1234", make_connection())
        await registry.remove_member(None, make_connection())

        assert registry.room_count() == 0


class TestExpiry:

    @pytest.mark.asyncio
    async def test_idle_room_expires_and_closes_members(self, make_registry, make_connection):
        registry = make_registry(timeout_seconds=0.1)
        a, b = make_connection(), make_connection()
        room_id = (await registry.create_room(a)).room_id
        await registry.join(room_id, b)

        await asyncio.sleep(0.3)

        assert await registry.get_room(room_id) is None
        assert a.closed and b.closed
        assert a.close_reason == EXPIRED_CLOSE_REASON
        assert a.received == [] and b.received == []
        assert a.room_id is None and b.room_id is None
        with pytest.raises(RoomNotFound):
            await registry.join(room_id, make_connection())

    @pytest.mark.asyncio
    async def test_join_extends_deadline_for_whole_room(self, make_registry, make_connection):
        registry = make_registry(timeout_seconds=0.5)
        creator, joiner = make_connection(), make_connection()
        created = await registry.create_room(creator)

        await asyncio.sleep(0.3)
        joined = await registry.join(created.room_id, joiner)
        assert joined.expires_at > created.expires_at

        # Past the creator's original deadline
        await asyncio.sleep(0.35)
        assert await registry.get_room(created.room_id) is not None
        assert not creator.closed

        await asyncio.sleep(0.4)
        assert await registry.get_room(created.room_id) is None
        assert creator.closed and joiner.closed

    @pytest.mark.asyncio
    async def test_reset_keeps_exactly_one_pending_timer(self, registry, make_connection):
        room_id = (await registry.create_room(make_connection())).room_id
        await registry.join(room_id, make_connection())
        await registry.join(room_id, make_connection())

        assert len(registry.scheduler) == 1

    @pytest.mark.asyncio
    async def test_stale_token_does_not_expire_room(self, registry, make_connection):
        connection = make_connection()
        room_id = (await registry.create_room(connection)).room_id

        assert await registry.expire(room_id, token=0) is None
        assert await registry.get_room(room_id) is not None
        assert connection.room_id == room_id

    @pytest.mark.asyncio
    async def test_disconnect_does_not_stop_expiry(self, make_registry, make_connection):
        registry = make_registry(timeout_seconds=0.1)
        connection = make_connection()
        room_id = (await registry.create_room(connection)).room_id
        await registry.remove_member(room_id, connection)

        await asyncio.sleep(0.3)

        assert registry.room_count() == 0
        assert len(registry.scheduler) == 0


class TestAdministration:

    @pytest.mark.asyncio
    async def test_close_room_detaches_and_cancels_timer(self, registry, make_connection):
        a = make_connection()
        room_id = (await registry.create_room(a)).room_id

        members = await registry.close_room(room_id)

        assert [m.id for m in members] == [a.id]
        assert a.room_id is None
        assert registry.room_count() == 0
        assert len(registry.scheduler) == 0
        assert await registry.close_room(room_id) is None

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_expiry_teardown_in_progress(self, make_registry):
        registry = make_registry(timeout_seconds=0.05)
        gate = asyncio.Event()

        class SlowToClose(FakeConnection):
            async def close(self, code=1000, reason=None):
                await gate.wait()
                await super().close(code=code, reason=reason)

        member = SlowToClose()
        await registry.create_room(member)
        await asyncio.sleep(0.2)
        assert registry.room_count() == 0
        assert registry.scheduler.firing == 1

        shutdown = asyncio.create_task(registry.shutdown())
        await asyncio.sleep(0.05)
        assert not shutdown.done()

        gate.set()
        await asyncio.wait_for(shutdown, timeout=1.0)
        assert member.closed
        assert registry.scheduler.firing == 0

    @pytest.mark.asyncio
    async def test_shutdown_drops_rooms_and_timers(self, registry, make_connection):
        await registry.create_room(make_connection())
        await registry.create_room(make_connection())

        await registry.shutdown()

        assert registry.room_count() == 0
        assert len(registry.scheduler) == 0
