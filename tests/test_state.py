"""Reconnect backoff state"""

from fieldrelay.common.state import ConnectionState, ReconnectState


def test_backoff_doubles_up_to_cap():
    state = ReconnectState(initial_delay=1, max_delay=60)

    delays = [state.record_failure("connect refused") for _ in range(9)]

    assert delays == [1, 2, 4, 8, 16, 32, 60, 60, 60]
    assert state.consecutive_failures == 9
    assert state.last_error == "connect refused"


def test_success_resets_to_floor():
    state = ReconnectState(initial_delay=1, max_delay=60)
    for _ in range(5):
        state.record_failure()

    state.record_success()

    assert state.delay == 1
    assert state.consecutive_failures == 0
    assert state.sessions == 1
    assert state.connected_since is not None
    assert state.record_failure() == 1
    assert state.connected_since is None
    assert state.record_failure() == 2


def test_custom_floor_and_cap():
    state = ReconnectState(initial_delay=0.5, max_delay=3)

    assert [state.record_failure() for _ in range(5)] == [0.5, 1, 2, 3, 3]


def test_status_snapshot():
    state = ReconnectState()
    state.state = ConnectionState.CONNECTING
    state.record_failure("timeout")

    snapshot = state.to_dict()

    assert snapshot["state"] == "connecting"
    assert snapshot["delay_s"] == 2
    assert snapshot["last_error"] == "timeout"
    assert snapshot["connected_since"] is None
