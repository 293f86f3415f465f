from origin_alpaca.origin.camera import CameraStateMachine
from origin_alpaca.origin.events import CameraStateChanged, EventBus
from origin_alpaca.origin.state import CameraState


def _machine():
    events = EventBus()
    seen: list[CameraState] = []
    events.subscribe(CameraStateChanged, lambda event: seen.append(event.state))
    return CameraStateMachine(events), seen


def test_successful_acquisition_cycle():
    camera, seen = _machine()

    assert camera.begin_exposure()
    assert camera.image_available()
    assert camera.download_succeeded()

    assert camera.is_idle
    assert seen == [CameraState.EXPOSING, CameraState.READING, CameraState.IDLE]


def test_failed_download_enters_error_until_reset():
    camera, seen = _machine()
    camera.begin_exposure()
    camera.image_available()

    assert camera.download_failed()
    assert camera.state is CameraState.ERROR
    assert not camera.begin_exposure()

    assert camera.reset()
    assert camera.is_idle
    assert seen[-2:] == [CameraState.ERROR, CameraState.IDLE]


def test_rejected_transitions_leave_state_alone():
    camera, seen = _machine()

    assert not camera.image_available()
    assert not camera.abort_exposure()
    assert not camera.download_succeeded()
    assert not camera.reset()
    assert camera.is_idle
    assert seen == []

    camera.begin_exposure()
    assert not camera.begin_exposure()
    assert camera.abort_exposure()
    assert camera.is_idle


def test_new_image_recovers_from_error():
    camera, seen = _machine()
    camera.begin_exposure()
    camera.image_available()
    camera.download_failed()

    assert camera.image_available()
    assert camera.is_reading
    assert camera.download_succeeded()
    assert camera.is_idle
    assert seen[-3:] == [CameraState.ERROR, CameraState.READING, CameraState.IDLE]
