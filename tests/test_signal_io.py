import math
import socket
import threading
import time

import pytest

from signalpilot.controller import VehicleController
from signalpilot.signal_io import (
    GpsFix,
    ImuSample,
    SignalIO,
    VelocityReport,
    haversine_distance,
    parse_traffic_light_message,
)


@pytest.fixture
def controller(tmp_path):
    return VehicleController(output_dir=tmp_path)


@pytest.fixture
def published():
    return []


@pytest.fixture
def node(controller, published):
    return SignalIO(controller, published.append, 5.0)


def _free_port():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


def _connect(port):
    deadline = time.monotonic() + 5
    while True:
        try:
            return socket.create_connection(("127.0.0.1", port), timeout=1)
        except ConnectionRefusedError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.02)


def test_haversine_same_point_is_zero():
    assert haversine_distance(48.1, 11.5, 48.1, 11.5) == pytest.approx(0.0)


def test_haversine_is_symmetric():
    forward = haversine_distance(48.1, 11.5, 48.2, 11.7)
    backward = haversine_distance(48.2, 11.7, 48.1, 11.5)
    assert forward == pytest.approx(backward)


def test_haversine_along_meridian_matches_arc_length():
    assert haversine_distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(
        math.radians(1.0) * 6371000.0
    )


def test_parse_message():
    assert parse_traffic_light_message("1,3,200") == (1, 3, 200)


def test_parse_message_ignores_whitespace_and_trailing_text():
    assert parse_traffic_light_message(" 7, 6, 15 extra\n") == (7, 6, 15)


@pytest.mark.parametrize("text", ["", "bad", "1,2", "1;2;3", "a,3,200"])
def test_parse_message_rejects_malformed(text):
    with pytest.raises(ValueError):
        parse_traffic_light_message(text)


def test_first_gps_fix_sets_reference(node, controller):
    node.on_gps(GpsFix(stamp=1.0, lat=48.0, lon=11.0, lat_stdev=0.5, lon_stdev=0.5))
    assert node.gps_ref_set
    assert (node.lat0, node.lon0) == (48.0, 11.0)
    assert node.gps_distance == 0.0
    assert controller.actual_trajectory == []


def test_later_gps_fix_gives_distance(node):
    node.on_gps(GpsFix(stamp=1.0, lat=48.0, lon=11.0))
    node.on_gps(GpsFix(stamp=2.0, lat=48.001, lon=11.0, lat_stdev=0.25, lon_stdev=0.5))
    assert node.gps_distance == pytest.approx(haversine_distance(48.001, 11.0, 48.0, 11.0))
    assert node.gps_std == pytest.approx(0.75)
    assert node.last_gps_time == 2.0


def test_first_imu_sample_only_stores_time(node, controller):
    node.on_imu(ImuSample(stamp=1000.0, north_velocity=3.0, east_velocity=4.0))
    assert node.last_imu_time == 1000.0
    assert controller.actual_trajectory == []


def test_imu_integrates_distance_when_gps_stale(node, controller):
    node.on_imu(ImuSample(stamp=1000.0, north_velocity=3.0, east_velocity=4.0))
    node.on_imu(ImuSample(stamp=1002.0, north_velocity=3.0, east_velocity=4.0))
    assert controller.last_position == pytest.approx(10.0)
    assert node.imu_distance == pytest.approx(controller.last_position)
    assert controller.actual_path.exists()


def test_imu_fuses_with_fresh_gps(node, controller):
    node.on_gps(GpsFix(stamp=999.0, lat=48.0, lon=11.0))
    node.on_imu(ImuSample(stamp=1000.0, north_velocity=2.0, east_velocity=0.0))
    node.on_gps(GpsFix(stamp=1000.9, lat=48.0001, lon=11.0, lat_stdev=0.5, lon_stdev=0.5))
    node.on_imu(
        ImuSample(
            stamp=1001.0,
            north_velocity=2.0,
            east_velocity=0.0,
            north_velocity_stdev=0.5,
            east_velocity_stdev=0.5,
        )
    )
    expected = (node.gps_distance + node.imu_distance) / 2
    assert controller.last_position == pytest.approx(expected)


def test_speed_report_updates_controller(node, controller):
    node.on_speed(VelocityReport(hor_speed=3.5))
    assert controller.last_speed == 3.5


def test_control_step_ramps_up(node, published):
    assert node.control_step() == pytest.approx(0.2)
    assert published == [pytest.approx(0.2)]
    assert node.accelerating_to_target


def test_control_step_ramp_capped_at_target(node, controller, published):
    controller.update_speed(4.9)
    assert node.control_step() == 5.0
    assert published == [5.0]


def test_control_step_follows_trajectory_after_ramp(node, controller, published):
    controller.update_speed(6.0)
    node.trajectory_step()
    plan = [point.speed for point in controller.trajectory]
    commands = [node.control_step() for _ in plan]
    assert commands == plan
    assert published == plan
    assert node.control_step() is None
    assert not node.accelerating_to_target


def test_ramp_is_not_resumed_once_left(node, controller, published):
    controller.update_speed(6.0)
    first = node.control_step()
    controller.update_speed(0.0)
    second = node.control_step()
    assert (first, second) == (None, None)
    assert node.accelerating_to_target is False
    assert published == []


def test_trajectory_step_generates_plan(node, controller):
    node.trajectory_step()
    node.trajectory_step()
    assert controller.trajectory_count == 2
    assert controller.predicted_path.exists()


def test_handle_traffic_message_applies_update(node, controller):
    assert node.handle_traffic_message("1,3,200") == (1, 3, 200)
    assert controller.traffic_light_state == 3
    assert controller.time_to_next_phase == pytest.approx(20.0)


def test_handle_traffic_message_ignores_garbage(node, controller):
    assert node.handle_traffic_message("hello") is None
    assert controller.traffic_light_state == 0


def test_serve_traffic_lights_over_socket(node, controller):
    port = _free_port()
    stop = threading.Event()
    worker = threading.Thread(
        target=node.serve_traffic_lights, args=("127.0.0.1", port, stop), daemon=True
    )
    worker.start()
    with _connect(port) as client:
        client.sendall(b"4,8,30")
        deadline = time.monotonic() + 5
        while controller.traffic_light_state != 8 and time.monotonic() < deadline:
            time.sleep(0.02)
    stop.set()
    worker.join(timeout=5)
    assert controller.traffic_light_state == 8
    assert not worker.is_alive()


def test_serve_traffic_lights_stops_without_client(node):
    port = _free_port()
    stop = threading.Event()
    stop.set()
    worker = threading.Thread(
        target=node.serve_traffic_lights, args=("127.0.0.1", port, stop), daemon=True
    )
    worker.start()
    worker.join(timeout=5)
    assert not worker.is_alive()