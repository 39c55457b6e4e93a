import numpy as np
import pytest

from pinpoint.atlas import AnnotationDataset
from pinpoint.core.errors import ErrorKind, LinkError, PinpointError
from pinpoint.core.recorder import MemoryRecordSink
from pinpoint.manipulators import (
    EchoState,
    ManipulatorBinding,
    SimulatedManipulator,
    SimulatedManipulatorLink,
)
from pinpoint.probes import ProbeController, ProbeInsertion
from pinpoint.transforms import SensapexLeftTransform, SensapexRightTransform


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _setup(manipulator_type="sensapex", position=(1.0, 2.0, 3.0, 4.0), calibrated=True, controller=None, **kwargs):
    clock = FakeClock()
    link = SimulatedManipulatorLink(
        [SimulatedManipulator("m1", position=position, calibrated=calibrated)],
        manipulator_type=manipulator_type,
        clock=clock,
    )
    if controller is None:
        controller = ProbeController(ProbeInsertion((0.0, 0.0, 0.0), (0.0, 90.0, 0.0)))
    sink = MemoryRecordSink()
    binding = ManipulatorBinding(controller, link, clock=clock, record_sink=sink, **kwargs)
    return clock, link, controller, binding, sink


def _pump_until_echo(link, binding, limit: int = 10) -> None:
    for _ in range(limit):
        link.pump()
        if binding.echo_count:
            return
    raise AssertionError(f"binding never echoed (state={binding.state})")


def _slab_dataset() -> AnnotationDataset:
    data = np.zeros((20, 20, 20), dtype=np.int32)
    data[:, :, 10:] = 1
    return AnnotationDataset(data, 0.5)


def test_first_echo_seeds_zero_offset_and_yields_zero_delta() -> None:
    clock, link, controller, binding, sink = _setup()
    errors = []
    binding.initialize("m1", calibrated=True, on_error=errors.append)
    assert binding.state is EchoState.QUERYING
    _pump_until_echo(link, binding)

    assert binding.state is EchoState.ECHOING
    np.testing.assert_allclose(binding.zero_coordinate_offset, (1.0, 2.0, 3.0, 4.0))
    np.testing.assert_allclose(controller.insertion.apmldv, np.zeros(3), atol=1e-12)
    assert controller.locked
    assert link.manipulator("m1").registered
    assert errors == []
    assert len(sink.records) == 1
    assert sink.records[0].position == (1.0, 2.0, 3.0, 4.0)
    assert sink.records[0].tag == "ephys_link"
    # the chain keeps exactly one position request in flight
    assert link.pending == 1


def test_echo_maps_manipulator_position_into_insertion() -> None:
    clock, link, controller, binding, sink = _setup(position=(0.0, 0.0, 0.0, 0.0))
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    assert isinstance(binding.transform, SensapexLeftTransform)

    binding.echo_position((1.0, 2.0, 3.0, 0.5))
    # left-handed sensapex at phi 0 -> space (-1, 2, -3) -> world (2, 3, 1)
    # -> CCF (-1, 2, -3), then 0.5 mm of depth straight down
    np.testing.assert_allclose(controller.insertion.apmldv, (-1.0, 2.0, -2.5), atol=1e-9)


def test_new_scale_drops_depth_and_inverts_to_manipulator_position() -> None:
    controller = ProbeController(ProbeInsertion((0.0, 0.0, 0.0), (30.0, 60.0, 0.0)))
    clock, link, controller, binding, sink = _setup(
        manipulator_type="new_scale", position=(3.0, 4.0, 5.0, 6.0), controller=controller
    )
    binding.zero_coordinate_offset = (1.0, 1.0, 1.0, 0.0)
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)

    target = binding.insertion_to_manipulator_position(controller.insertion.apmldv)
    np.testing.assert_allclose(target, (3.0, 4.0, 5.0, 0.0), atol=1e-9)


def test_uncalibrated_manipulator_is_calibrated_under_a_write_lease() -> None:
    clock, link, controller, binding, sink = _setup(manipulator_type="new_scale", calibrated=False)
    binding.initialize("m1", calibrated=False)
    _pump_until_echo(link, binding)

    events = [e for e, _ in link.sent]
    assert events[:6] == [
        "get_manipulators",
        "register_manipulator",
        "set_can_write",
        "calibrate",
        "set_can_write",
        "get_pos",
    ]
    m = link.manipulator("m1")
    assert m.calibrated
    assert m.write_until == 0.0


def test_unknown_manipulator_is_reported_and_state_unchanged() -> None:
    clock, link, controller, binding, sink = _setup()
    errors = []
    binding.initialize("ghost", calibrated=True, on_error=errors.append)
    link.pump()

    assert binding.state is EchoState.UNINITIALIZED
    assert len(errors) == 1
    assert errors[0].kind is ErrorKind.UNKNOWN_MANIPULATOR
    assert errors[0].manipulator_id == "ghost"
    assert not controller.locked
    assert [e for e, _ in link.sent] == ["get_manipulators"]
    assert link.pending == 0


def test_initialize_twice_raises() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    with pytest.raises(PinpointError):
        binding.initialize("m1", calibrated=True)


def test_mode_inference_picks_axis_that_moved_most() -> None:
    clock, link, controller, binding, sink = _setup(position=(0.0, 0.0, 0.0, 0.0))
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    modes = []
    binding.drop_mode_listeners.append(modes.append)

    binding.echo_position((0.0, 0.0, 0.5, 0.2))
    assert binding.drop_to_surface_with_depth is False
    binding.echo_position((0.0, 0.0, 0.6, 0.7))
    assert binding.drop_to_surface_with_depth is True
    # below the hysteresis threshold nothing changes
    binding.echo_position((0.0, 0.0, 0.60005, 0.7))
    assert binding.drop_to_surface_with_depth is True
    assert modes == [False, True]


def test_drop_mode_is_frozen_while_brain_offset_is_set() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.brain_surface_offset = 1.0
    binding.drop_to_surface_with_depth = False
    assert binding.drop_to_surface_with_depth is True
    binding.brain_surface_offset = 0.0
    binding.drop_to_surface_with_depth = False
    assert binding.drop_to_surface_with_depth is False


def test_zero_offset_keeps_components_for_nan() -> None:
    clock, link, controller, binding, sink = _setup()
    seen = []
    binding.zero_offset_listeners.append(seen.append)
    binding.zero_coordinate_offset = (1.0, 2.0, 3.0, 4.0)
    binding.zero_coordinate_offset = (np.nan, 5.0, np.nan, np.nan)
    np.testing.assert_allclose(binding.zero_coordinate_offset, (1.0, 5.0, 3.0, 4.0))
    assert len(seen) == 2


def test_disable_mid_flight_ignores_stale_reply() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    before = controller.insertion.apmldv.copy()
    echoes = binding.echo_count

    link.manipulator("m1").position = np.array([9.0, 9.0, 9.0, 9.0])
    assert link.pending == 1
    binding.disable()
    link.pump()

    np.testing.assert_allclose(controller.insertion.apmldv, before)
    assert binding.echo_count == echoes
    assert binding.state is EchoState.DISABLED
    assert binding.manipulator_id is None
    np.testing.assert_allclose(binding.zero_coordinate_offset, np.zeros(4))
    assert binding.brain_surface_offset == 0.0
    assert not controller.locked
    assert not link.manipulator("m1").registered
    assert link.pending == 0


def test_stalled_request_is_reissued_and_recovers() -> None:
    clock, link, controller, binding, sink = _setup(request_timeout_s=1.0)
    errors = []
    binding.initialize("m1", calibrated=True, on_error=errors.append)
    _pump_until_echo(link, binding)
    echoes = binding.echo_count

    link.hold_acknowledgements = True
    clock.now = 0.5
    assert binding.tick() is EchoState.ECHOING
    clock.now = 1.5
    assert binding.tick() is EchoState.STALLED
    assert [e.kind for e in errors] == [ErrorKind.STALLED]
    assert binding.stall_count == 1
    assert link.pending == 2

    link.hold_acknowledgements = False
    link.pump()
    # the superseded reply is dropped, the fresh one is echoed
    assert binding.state is EchoState.ECHOING
    assert binding.echo_count == echoes + 1


def test_records_are_throttled() -> None:
    clock, link, controller, binding, sink = _setup(log_rate_hz=10.0)
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    assert len(sink.records) == 1
    link.pump()
    clock.now = 0.05
    link.pump()
    assert len(sink.records) == 1
    clock.now = 0.1
    link.pump()
    assert len(sink.records) == 2
    assert sink.records[-1].timestamp == pytest.approx(0.1)


def test_right_handed_switch_rebuilds_transform() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    binding.right_handed = True
    assert isinstance(binding.transform, SensapexRightTransform)
    with pytest.raises(PinpointError):
        ManipulatorBinding(controller, link).refresh_transform()


def test_brain_offset_in_brain_uses_known_depth(monkeypatch) -> None:
    dataset = _slab_dataset()
    ins = ProbeInsertion((5.0, 5.0, 7.2), (0.0, 90.0, 0.0), space=dataset.coordinate_space)
    controller = ProbeController(ins, dataset)
    clock, link, controller, binding, sink = _setup(controller=controller)

    def no_raycast(*args, **kwargs):
        raise AssertionError("surface search should not run for an in-brain tip")

    monkeypatch.setattr(dataset, "find_surface_coordinate", no_raycast)
    binding.increment_brain_surface_offset(0.5)
    assert binding.compute_brain_surface_offset() is True
    assert binding.brain_surface_offset == 0.5 - controller.surface.depth_t
    assert controller.surface.depth_t == pytest.approx(2.0, abs=1e-9)


def test_brain_offset_raycasts_from_outside() -> None:
    dataset = _slab_dataset()
    ins = ProbeInsertion((5.0, 5.0, 3.2), (0.0, 90.0, 0.0), space=dataset.coordinate_space)
    controller = ProbeController(ins, dataset)
    clock, link, controller, binding, sink = _setup(controller=controller)
    assert not controller.is_probe_in_brain()

    assert binding.compute_brain_surface_offset() is True
    assert binding.brain_surface_offset == pytest.approx(2.0, abs=1e-9)


def test_brain_offset_surface_miss_leaves_offset_unchanged() -> None:
    dataset = AnnotationDataset(np.zeros((10, 10, 10), dtype=np.int32), 1.0)
    ins = ProbeInsertion((5.0, 5.0, 5.0), (0.0, 90.0, 0.0), space=dataset.coordinate_space)
    controller = ProbeController(ins, dataset)
    clock, link, controller, binding, sink = _setup(controller=controller)
    errors = []
    binding.increment_brain_surface_offset(0.25)

    assert binding.compute_brain_surface_offset(on_error=errors.append) is False
    assert binding.brain_surface_offset == 0.25
    assert errors[0].kind is ErrorKind.SURFACE_NOT_FOUND


def test_move_xyz_by_world_delta() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    link.manipulator("m1").write_until = 1e9
    arrived = []

    binding.move_xyz_by_world_space_delta((1.0, 0.0, 0.0), arrived.append)
    for _ in range(3):
        link.pump()

    # world +x is sensapex +y for a left-handed rig at phi 0
    np.testing.assert_allclose(link.manipulator("m1").position, (1.0, 3.0, 3.0, 4.0), atol=1e-12)
    assert len(arrived) == 1
    assert "goto_pos" in [e for e, _ in link.sent]


def test_move_depth_toggles_inside_brain() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    link.manipulator("m1").write_until = 1e9
    done = []

    binding.move_depth_by_world_space_delta(0.5, done.append)
    for _ in range(5):
        link.pump()

    assert link.manipulator("m1").position[3] == pytest.approx(4.5)
    assert not link.manipulator("m1").inside_brain
    assert done == [False]
    depth_events = [e for e, _ in link.sent if e in {"set_inside_brain", "drive_to_depth"}]
    assert depth_events == ["set_inside_brain", "drive_to_depth", "set_inside_brain"]


def test_move_without_write_lease_reports_error() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    errors = []

    binding.move_xyz_by_world_space_delta((0.0, 1.0, 0.0), on_error=errors.append)
    for _ in range(3):
        link.pump()

    assert errors and errors[0].kind is ErrorKind.HARDWARE_LINK
    np.testing.assert_allclose(link.manipulator("m1").position, (1.0, 2.0, 3.0, 4.0))


def test_moves_require_active_binding() -> None:
    clock, link, controller, binding, sink = _setup()
    with pytest.raises(PinpointError):
        binding.move_xyz_by_world_space_delta((1.0, 0.0, 0.0))
    with pytest.raises(PinpointError):
        binding.move_depth_by_world_space_delta(1.0)


def test_zero_offset_is_seeded_when_first_reply_is_lost() -> None:
    clock, link, controller, binding, sink = _setup(request_timeout_s=1.0)
    errors = []
    binding.initialize("m1", calibrated=True, on_error=errors.append)
    for _ in range(3):
        link.pump()
    assert binding.state is EchoState.ECHOING
    assert binding.echo_count == 0
    assert link.drop_pending() == 1

    clock.now = 1.5
    assert binding.tick() is EchoState.STALLED
    link.pump()

    assert binding.state is EchoState.ECHOING
    assert [e.kind for e in errors] == [ErrorKind.STALLED]
    np.testing.assert_allclose(binding.zero_coordinate_offset, (1.0, 2.0, 3.0, 4.0))
    np.testing.assert_allclose(controller.insertion.apmldv, np.zeros(3), atol=1e-12)


def test_zero_offset_is_seeded_when_first_reply_is_late() -> None:
    clock, link, controller, binding, sink = _setup(request_timeout_s=1.0)
    binding.initialize("m1", calibrated=True)
    for _ in range(3):
        link.pump()
    link.hold_acknowledgements = True
    clock.now = 1.5
    binding.tick()
    link.hold_acknowledgements = False
    link.pump()

    assert binding.echo_count == 1
    np.testing.assert_allclose(binding.zero_coordinate_offset, (1.0, 2.0, 3.0, 4.0))


def test_calibration_failure_rolls_back_and_allows_retry() -> None:
    clock, link, controller, binding, sink = _setup(calibrated=False)
    errors = []
    binding.initialize("m1", calibrated=False, on_error=errors.append)
    for _ in range(3):
        link.pump()
    assert binding.state is EchoState.CALIBRATING
    assert controller.locked
    # the write lease lapses before the calibrate request is handled
    link.manipulator("m1").write_until = 0.0
    link.pump()

    assert binding.state is EchoState.UNINITIALIZED
    assert binding.manipulator_id is None
    assert not controller.locked
    assert controller.manipulator_binding is None
    assert [e.kind for e in errors] == [ErrorKind.HARDWARE_LINK]
    link.pump()
    assert not link.manipulator("m1").registered

    binding.initialize("m1", calibrated=True, on_error=errors.append)
    _pump_until_echo(link, binding)
    assert binding.state is EchoState.ECHOING
    assert controller.locked


def test_registration_failure_rolls_back_to_disabled(monkeypatch) -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    binding.disable()
    link.pump()
    refused = []

    def refuse(manipulator_id, on_success=None, on_error=None) -> None:
        refused.append(manipulator_id)
        on_error(LinkError(ErrorKind.HARDWARE_LINK, "registration refused", manipulator_id))

    monkeypatch.setattr(link, "register_manipulator", refuse)
    errors = []
    binding.initialize("m1", calibrated=True, on_error=errors.append)
    link.pump()

    assert refused == ["m1"]
    assert binding.state is EchoState.DISABLED
    assert binding.manipulator_id is None
    assert not controller.locked
    assert [e.kind for e in errors] == [ErrorKind.HARDWARE_LINK]
    # only the earlier disable unregistered
    assert [e for e, _ in link.sent].count("unregister_manipulator") == 1


def test_reinitialize_starts_from_a_clean_echo_history() -> None:
    clock, link, controller, binding, sink = _setup(position=(0.0, 0.0, 5.0, 0.0))
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    assert binding.drop_to_surface_with_depth is False
    assert len(sink.records) == 1
    binding.disable()
    link.pump()

    clock.now = 0.05
    link.manipulator("m1").position = np.array([0.0, 0.0, 5.0, 0.5])
    echoes = binding.echo_count
    binding.initialize("m1", calibrated=True)
    for _ in range(4):
        link.pump()
        if binding.echo_count > echoes:
            break
    # DV moved 5 from the reset sample, depth only 0.5
    assert binding.drop_to_surface_with_depth is False
    assert len(sink.records) == 2


def test_move_is_dropped_after_disable() -> None:
    clock, link, controller, binding, sink = _setup()
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    link.manipulator("m1").write_until = 1e9
    arrived = []

    binding.move_xyz_by_world_space_delta((1.0, 0.0, 0.0), arrived.append)
    binding.move_depth_by_world_space_delta(0.5, arrived.append)
    binding.disable()
    for _ in range(3):
        link.pump()

    sent = [e for e, _ in link.sent]
    assert "goto_pos" not in sent
    assert "set_inside_brain" not in sent
    assert arrived == []
    np.testing.assert_allclose(link.manipulator("m1").position, (1.0, 2.0, 3.0, 4.0))


def test_stop_halts_drifting_manipulators() -> None:
    clock, link, controller, binding, sink = _setup()
    link.manipulator("m1").velocity = np.array([1.0, 0.0, 0.0, 0.0])
    stopped = []
    link.stop(stopped.append)
    link.pump()
    link.advance(1.0)
    assert stopped == [True]
    np.testing.assert_allclose(link.manipulator("m1").position, (1.0, 2.0, 3.0, 4.0))


def test_manual_control_moves_the_manipulator() -> None:
    clock, link, controller, binding, sink = _setup()
    controller.manual_control = True
    binding.initialize("m1", calibrated=True)
    _pump_until_echo(link, binding)
    assert controller.manipulator_binding is binding
    link.manipulator("m1").write_until = 1e9

    assert controller.move_xyzd((1.0, 0.0, 0.0, 0.0), 1.0)
    # input is ignored until the move is acknowledged
    assert not controller.move_xyzd((1.0, 0.0, 0.0, 0.0), 1.0)
    for _ in range(5):
        link.pump()

    np.testing.assert_allclose(link.manipulator("m1").position, (1.0, 3.0, 3.0, 4.0), atol=1e-12)
    assert not controller.manipulator_move_in_progress
    assert np.linalg.norm(controller.insertion.apmldv) == pytest.approx(1.0)

    assert controller.move_xyzd((0.0, 0.0, 0.0, 1.0), 0.5)
    for _ in range(6):
        link.pump()
    assert link.manipulator("m1").position[3] == pytest.approx(4.5)
    assert not link.manipulator("m1").inside_brain
    assert not controller.manipulator_move_in_progress


def test_manual_control_failure_releases_input() -> None:
    clock, link, controller, binding, sink = _setup()
    controller.manual_control = True
    errors = []
    binding.initialize("m1", calibrated=True, on_error=errors.append)
    _pump_until_echo(link, binding)

    assert controller.move_xyzd((0.0, 1.0, 0.0, 0.0), 1.0)
    for _ in range(3):
        link.pump()
    assert not controller.manipulator_move_in_progress
    np.testing.assert_allclose(link.manipulator("m1").position, (1.0, 2.0, 3.0, 4.0))

    binding.disable()
    assert controller.manipulator_binding is None
    assert not controller.locked
    # local edits apply again once the manipulator is detached
    assert controller.move_xyzd((0.0, 1.0, 0.0, 0.0), 1.0)
    assert controller.dirty
    assert [e for e, _ in link.sent].count("goto_pos") == 1
