import pytest

from peerlink.core.exceptions import InvalidRequestError, NotFoundError
from peerlink.services.signaling_service import SignalingService
from peerlink.services.store import EphemeralStore, MemoryBackend

from conftest import FakeClock

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}
CANDIDATE = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0", "sdpMLineIndex": 0}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return SignalingService(EphemeralStore(MemoryBackend(clock=clock)))


@pytest.mark.asyncio
async def test_offer_round_trip(service):
    await service.publish_offer("room-42", OFFER, [CANDIDATE])
    record = await service.fetch_offer("room-42")
    assert record.offer == OFFER
    assert record.candidates == [CANDIDATE]
    assert record.createdAt > 0


@pytest.mark.asyncio
async def test_session_ids_are_normalized(service):
    await service.publish_offer("  Room-42!! ", OFFER)
    assert (await service.fetch_offer("room-42")).offer == OFFER


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", [None, "", "!!!"])
async def test_empty_session_id_rejected(service, session_id):
    with pytest.raises(InvalidRequestError):
        await service.publish_offer(session_id, OFFER)
    with pytest.raises(InvalidRequestError):
        await service.fetch_offer(session_id)


@pytest.mark.asyncio
async def test_offer_and_answer_payloads_required(service):
    with pytest.raises(InvalidRequestError):
        await service.publish_offer("room", None)
    await service.publish_offer("room", OFFER)
    with pytest.raises(InvalidRequestError):
        await service.publish_answer("room", {})


@pytest.mark.asyncio
async def test_new_offer_supersedes_session_and_its_answer(service):
    await service.publish_offer("room", OFFER)
    await service.publish_answer("room", ANSWER)

    newer = {"type": "offer", "sdp": "v=0 newer"}
    await service.publish_offer("room", newer)

    assert (await service.fetch_offer("room")).offer == newer
    with pytest.raises(NotFoundError):
        await service.fetch_answer_and_retire("room")


@pytest.mark.asyncio
async def test_answer_requires_existing_offer(service):
    with pytest.raises(NotFoundError, match="Room not found"):
        await service.publish_answer("ghost", ANSWER)


@pytest.mark.asyncio
async def test_answer_is_consumed_once_and_retires_session(service):
    await service.publish_offer("room", OFFER)
    await service.publish_answer("room", ANSWER, [CANDIDATE])

    record = await service.fetch_answer_and_retire("room")
    assert record.answer == ANSWER
    assert record.candidates == [CANDIDATE]

    with pytest.raises(NotFoundError, match="Answer not found"):
        await service.fetch_answer_and_retire("room")
    with pytest.raises(NotFoundError):
        await service.fetch_offer("room")


@pytest.mark.asyncio
async def test_delete_is_idempotent(service):
    await service.publish_offer("room", OFFER)
    await service.delete_session("room")
    await service.delete_session("room")
    with pytest.raises(NotFoundError):
        await service.fetch_offer("room")


@pytest.mark.asyncio
async def test_records_expire(service, clock):
    await service.publish_offer("room", OFFER)
    await service.publish_answer("room", ANSWER)

    clock.advance(61)
    with pytest.raises(NotFoundError):
        await service.fetch_answer_and_retire("room")
    assert (await service.fetch_offer("room")).offer == OFFER

    clock.advance(240)
    with pytest.raises(NotFoundError):
        await service.fetch_offer("room")


def test_using_memory_store_flag(service):
    assert service.using_memory_store is True
