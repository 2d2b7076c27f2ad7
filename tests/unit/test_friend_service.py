"""Friend request state machine and friendship symmetry."""

from __future__ import annotations

import asyncio

import pytest

from eduverse.errors import DuplicateFact, NotFound, ValidationError
from eduverse.models import PLAYERS
from eduverse.progression.xp_service import get_player
from eduverse.schemas import TransitionResult
from eduverse.social.activity_service import list_player_activities
from eduverse.social.friend_service import (
    accept_friend_request,
    cancel_friend_request,
    get_friends,
    reject_friend_request,
    send_friend_request,
)


@pytest.fixture
def pair(make_player):
    async def _pair():
        return await make_player("alice"), await make_player("bob")

    return _pair


def _assert_no_pending(player, other_id: str) -> None:
    assert other_id not in player.friend_requests.sent
    assert other_id not in player.friend_requests.received


class TestSend:
    @pytest.mark.asyncio
    async def test_send_records_both_sides(self, store, aggregates, pair):
        alice, bob = await pair()

        await send_friend_request(store, aggregates, alice.id, bob.id)

        assert (await get_friends(store, alice.id)).sent_requests == [bob.id]
        assert (await get_friends(store, bob.id)).received_requests == [alice.id]

    @pytest.mark.asyncio
    async def test_self_request_rejected(self, store, aggregates, make_player):
        alice = await make_player()
        with pytest.raises(ValidationError):
            await send_friend_request(store, aggregates, alice.id, alice.id)

    @pytest.mark.asyncio
    async def test_unknown_target(self, store, aggregates, make_player):
        alice = await make_player()
        with pytest.raises(NotFound):
            await send_friend_request(store, aggregates, alice.id, "ghost")

    @pytest.mark.asyncio
    async def test_duplicate_send(self, store, aggregates, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)

        with pytest.raises(DuplicateFact):
            await send_friend_request(store, aggregates, alice.id, bob.id)

    @pytest.mark.asyncio
    async def test_send_when_already_friends(self, store, aggregates, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)
        await accept_friend_request(store, aggregates, bob.id, alice.id)

        with pytest.raises(DuplicateFact):
            await send_friend_request(store, aggregates, bob.id, alice.id)

    @pytest.mark.asyncio
    async def test_mutual_send_becomes_friendship(self, store, aggregates, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)

        await send_friend_request(store, aggregates, bob.id, alice.id)

        alice, bob = await get_player(store, alice.id), await get_player(store, bob.id)
        assert alice.friends == {bob.id}
        assert bob.friends == {alice.id}
        _assert_no_pending(alice, bob.id)
        _assert_no_pending(bob, alice.id)


class TestAccept:
    @pytest.mark.asyncio
    async def test_accept_is_symmetric(self, store, aggregates, cache, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)
        cache.reset_mock()

        result = await accept_friend_request(store, aggregates, bob.id, alice.id)

        assert result.success
        alice, bob = await get_player(store, alice.id), await get_player(store, bob.id)
        assert alice.friends == {bob.id}
        assert bob.friends == {alice.id}
        _assert_no_pending(alice, bob.id)
        _assert_no_pending(bob, alice.id)
        assert len(await list_player_activities(store, alice.id, kind="friend_added")) == 1
        assert len(await list_player_activities(store, bob.id, kind="friend_added")) == 1
        cache.invalidate.assert_any_await(f"player:{alice.id}")
        cache.invalidate.assert_any_await(f"player:{bob.id}")

    @pytest.mark.asyncio
    async def test_accept_without_request(self, store, aggregates, pair):
        alice, bob = await pair()
        with pytest.raises(ValidationError):
            await accept_friend_request(store, aggregates, bob.id, alice.id)

    @pytest.mark.asyncio
    async def test_concurrent_accepts(self, store, aggregates, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)

        results = await asyncio.gather(
            *(accept_friend_request(store, aggregates, bob.id, alice.id) for _ in range(3)),
            return_exceptions=True,
        )

        assert sum(isinstance(r, TransitionResult) for r in results) == 1
        assert len(await list_player_activities(store, alice.id, kind="friend_added")) == 1
        assert (await get_player(store, alice.id)).friends == {bob.id}
        assert (await get_player(store, bob.id)).friends == {alice.id}

    @pytest.mark.asyncio
    async def test_concurrent_cross_accepts_one_activity_per_side(self, store, aggregates, pair):
        alice, bob = await pair()
        await asyncio.gather(
            send_friend_request(store, aggregates, alice.id, bob.id),
            send_friend_request(store, aggregates, bob.id, alice.id),
        )
        assert (await get_friends(store, alice.id)).received_requests == [bob.id]

        results = await asyncio.gather(
            accept_friend_request(store, aggregates, alice.id, bob.id),
            accept_friend_request(store, aggregates, bob.id, alice.id),
            return_exceptions=True,
        )

        assert all(isinstance(r, (TransitionResult, DuplicateFact)) for r in results)
        assert any(isinstance(r, TransitionResult) for r in results)
        assert len(await list_player_activities(store, alice.id, kind="friend_added")) == 1
        assert len(await list_player_activities(store, bob.id, kind="friend_added")) == 1
        alice, bob = await get_player(store, alice.id), await get_player(store, bob.id)
        assert alice.friends == {bob.id}
        assert bob.friends == {alice.id}
        _assert_no_pending(alice, bob.id)
        _assert_no_pending(bob, alice.id)

    @pytest.mark.asyncio
    async def test_mirror_repairs_half_written_friendship(self, store, aggregates, pair):
        """A sender already listing the accepter as friend still ends symmetric."""
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)
        await store.add_to_set(PLAYERS, alice.id, "friends", bob.id)

        await accept_friend_request(store, aggregates, bob.id, alice.id)

        assert (await get_player(store, alice.id)).friends == {bob.id}
        assert (await get_player(store, bob.id)).friends == {alice.id}


class TestRejectAndCancel:
    @pytest.mark.asyncio
    async def test_reject_clears_both_sides(self, store, aggregates, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)

        await reject_friend_request(store, aggregates, bob.id, alice.id)

        _assert_no_pending(await get_player(store, alice.id), bob.id)
        _assert_no_pending(await get_player(store, bob.id), alice.id)
        assert (await get_player(store, bob.id)).friends == set()

    @pytest.mark.asyncio
    async def test_reject_without_request(self, store, aggregates, pair):
        alice, bob = await pair()
        with pytest.raises(ValidationError):
            await reject_friend_request(store, aggregates, bob.id, alice.id)

    @pytest.mark.asyncio
    async def test_cancel_then_resend(self, store, aggregates, pair):
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)

        await cancel_friend_request(store, aggregates, alice.id, bob.id)
        _assert_no_pending(await get_player(store, bob.id), alice.id)

        await send_friend_request(store, aggregates, alice.id, bob.id)
        assert (await get_friends(store, bob.id)).received_requests == [alice.id]

    @pytest.mark.asyncio
    async def test_cancel_without_request(self, store, aggregates, pair):
        alice, bob = await pair()
        with pytest.raises(ValidationError):
            await cancel_friend_request(store, aggregates, alice.id, bob.id)


class TestFriendAchievements:
    @pytest.mark.asyncio
    async def test_both_sides_evaluated(self, store, aggregates, pair):
        await store.insert(
            "achievements",
            {
                "id": "first_friend",
                "name": "First Friend",
                "xp_reward": 10,
                "requirement": {"kind": "friends", "value": 1},
            },
        )
        alice, bob = await pair()
        await send_friend_request(store, aggregates, alice.id, bob.id)

        result = await accept_friend_request(store, aggregates, bob.id, alice.id)

        assert result.unlocked == ["first_friend"]
        assert (await get_player(store, alice.id)).achievements == {"first_friend"}
        assert (await get_player(store, bob.id)).achievements == {"first_friend"}
