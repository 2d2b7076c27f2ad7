"""Friend requests and the symmetric friendship graph.

Per pair of players the relationship moves ``None -> Sent -> Friends`` or
``Sent -> None`` (reject or cancel). Friendship is stored on both sides;
the add on the accepting player's ``friends`` decides whether this call
performed the transition, and the mirror add on the sender repairs symmetry.
"""

from __future__ import annotations

import structlog

from eduverse.achievements.cascade import check_after_transition
from eduverse.aggregates import DerivedAggregates
from eduverse.errors import DuplicateFact, EduverseError, ValidationError
from eduverse.models import PLAYERS
from eduverse.progression.xp_service import get_player
from eduverse.schemas import FriendsView, TransitionResult
from eduverse.social.activity_service import record_activity
from eduverse.store.base import DocumentStore
from eduverse.transitions import add_membership, remove_membership

logger = structlog.get_logger()

SENT = "friend_requests.sent"
RECEIVED = "friend_requests.received"


async def _discard(store: DocumentStore, player_id: str, path: str, value: str) -> bool:
    """Remove a pending entry; failures are logged, not raised."""
    try:
        return await remove_membership(store, PLAYERS, player_id, path, value)
    except EduverseError:
        logger.warning("pending_request_cleanup_failed", player_id=player_id, path=path, value=value, exc_info=True)
        return False


async def send_friend_request(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    requester_id: str,
    target_id: str,
) -> TransitionResult:
    """Send a request. A pending request the other way is accepted instead."""
    if requester_id == target_id:
        raise ValidationError("You cannot send a friend request to yourself")

    requester = await get_player(store, requester_id)
    await get_player(store, target_id)

    if target_id in requester.friends:
        raise DuplicateFact("Already friends")
    if target_id in requester.friend_requests.received:
        return await accept_friend_request(store, aggregates, requester_id, target_id)

    await add_membership(store, PLAYERS, requester_id, SENT, target_id, what="sent a friend request to this user")
    try:
        await add_membership(store, PLAYERS, target_id, RECEIVED, requester_id, what="received this request")
    except DuplicateFact:
        pass

    await aggregates.social_graph_changed(requester_id, target_id)
    logger.info("friend_request_sent", requester_id=requester_id, target_id=target_id)
    return TransitionResult()


async def accept_friend_request(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    current_id: str,
    sender_id: str,
) -> TransitionResult:
    """Accept a pending request from ``sender_id``.

    Each side's ``friend_added`` activity and achievement check belong to
    the call whose add grew that side's ``friends`` set. When both players
    accept each other's requests at once, each call owns one side.
    """
    current = await get_player(store, current_id)
    if sender_id in current.friends:
        raise DuplicateFact("Already friends")
    if sender_id not in current.friend_requests.received:
        raise ValidationError("No pending friend request from this user")
    sender = await get_player(store, sender_id)

    await add_membership(store, PLAYERS, current_id, "friends", sender_id, what="friends")
    mirrored = True
    try:
        await add_membership(store, PLAYERS, sender_id, "friends", current_id, what="friends")
    except DuplicateFact:
        mirrored = False
        logger.info("friendship_mirror_present", player_id=sender_id, friend_id=current_id)

    # Both directions, in case the two players sent requests to each other.
    await _discard(store, current_id, RECEIVED, sender_id)
    await _discard(store, current_id, SENT, sender_id)
    await _discard(store, sender_id, SENT, current_id)
    await _discard(store, sender_id, RECEIVED, current_id)

    await record_activity(
        store,
        current_id,
        "friend_added",
        "New Friend",
        f"You are now friends with {sender.username}",
        {"friend_id": sender_id},
    )
    if mirrored:
        await record_activity(
            store,
            sender_id,
            "friend_added",
            "New Friend",
            f"You are now friends with {current.username}",
            {"friend_id": current_id},
        )
    await aggregates.social_graph_changed(current_id, sender_id)
    logger.info("friend_request_accepted", player_id=current_id, friend_id=sender_id)

    # Friend-count achievements can unlock for either side.
    unlocked = (await check_after_transition(store, aggregates, current_id)).unlocked
    if mirrored:
        await check_after_transition(store, aggregates, sender_id)
    return TransitionResult(unlocked=[u.id for u in unlocked])


async def reject_friend_request(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    current_id: str,
    sender_id: str,
) -> TransitionResult:
    await get_player(store, current_id)
    if not await remove_membership(store, PLAYERS, current_id, RECEIVED, sender_id):
        raise ValidationError("No pending friend request from this user")
    await _discard(store, sender_id, SENT, current_id)

    await aggregates.social_graph_changed(current_id, sender_id)
    logger.info("friend_request_rejected", player_id=current_id, sender_id=sender_id)
    return TransitionResult()


async def cancel_friend_request(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    requester_id: str,
    target_id: str,
) -> TransitionResult:
    await get_player(store, requester_id)
    if not await remove_membership(store, PLAYERS, requester_id, SENT, target_id):
        raise ValidationError("No pending friend request to this user")
    await _discard(store, target_id, RECEIVED, requester_id)

    await aggregates.social_graph_changed(requester_id, target_id)
    logger.info("friend_request_cancelled", requester_id=requester_id, target_id=target_id)
    return TransitionResult()


async def get_friends(store: DocumentStore, player_id: str) -> FriendsView:
    player = await get_player(store, player_id)
    return FriendsView(
        friends=sorted(player.friends),
        sent_requests=sorted(player.friend_requests.sent),
        received_requests=sorted(player.friend_requests.received),
    )
