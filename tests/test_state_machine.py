import asyncio

import pytest

from peerlink.client.state_machine import ConnectionStateMachine
from peerlink.core.exceptions import IllegalTransitionError
from peerlink.models import ConnectionState as S


def test_initiator_path():
    machine = ConnectionStateMachine()
    for state in (S.CREATING, S.WAITING, S.CONNECTING, S.CONNECTED):
        machine.transition(state)
    assert machine.state is S.CONNECTED


def test_joiner_skips_to_connecting():
    machine = ConnectionStateMachine()
    machine.transition(S.CONNECTING)
    machine.transition(S.CONNECTED)
    assert machine.is_in(S.CONNECTED)


@pytest.mark.parametrize(
    "path, target",
    [
        ((), S.CONNECTED),
        ((), S.WAITING),
        ((S.CREATING,), S.CONNECTING),
        ((S.CONNECTING, S.CONNECTED), S.CREATING),
    ],
)
def test_illegal_transitions_raise(path, target):
    machine = ConnectionStateMachine()
    for state in path:
        machine.transition(state)
    with pytest.raises(IllegalTransitionError):
        machine.transition(target)


@pytest.mark.parametrize("state", [S.CREATING, S.CONNECTING])
def test_any_state_returns_to_idle(state):
    machine = ConnectionStateMachine()
    machine.transition(state)
    machine.reset()
    assert machine.state is S.IDLE


def test_listeners_see_changes_and_can_unsubscribe():
    machine = ConnectionStateMachine()
    seen = []
    unsubscribe = machine.subscribe(lambda old, new: seen.append((old, new)))

    machine.transition(S.CREATING)
    machine.reset()
    machine.reset()
    unsubscribe()
    machine.transition(S.CONNECTING)

    assert seen == [(S.IDLE, S.CREATING), (S.CREATING, S.IDLE)]


def test_failing_listener_does_not_block_transition():
    machine = ConnectionStateMachine()

    def broken(old, new):
        raise RuntimeError("boom")

    machine.subscribe(broken)
    machine.transition(S.CREATING)
    assert machine.state is S.CREATING


@pytest.mark.asyncio
async def test_wait_for_catches_transient_state():
    machine = ConnectionStateMachine()
    waiter = asyncio.create_task(machine.wait_for(S.WAITING, timeout=1))
    await asyncio.sleep(0)

    machine.transition(S.CREATING)
    machine.transition(S.WAITING)
    machine.reset()

    await waiter


@pytest.mark.asyncio
async def test_wait_for_times_out():
    machine = ConnectionStateMachine()
    with pytest.raises(asyncio.TimeoutError):
        await machine.wait_for(S.CONNECTED, timeout=0.01)
