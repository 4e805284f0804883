"""Sensor fusion, traffic-light link and speed command loop for the vehicle controller."""

from __future__ import annotations

import argparse
import logging
import math
import re
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from signalpilot.controller import VehicleController

_log = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0
GPS_STALE_AFTER = 0.3
SPEED_RAMP_STEP = 0.2
DEFAULT_TARGET_SPEED = 5.0
TRAFFIC_LIGHT_PORT = 18080
_RECV_SIZE = 1023
_POLL_INTERVAL = 0.2

_MESSAGE_PATTERN = re.compile(r"\s*([+-]?\d+),\s*([+-]?\d+),\s*([+-]?\d+)")


@dataclass(frozen=True)
class ImuSample:
    """Inertial navigation solution: time stamp (s) and velocities with deviations (m/s)."""

    stamp: float
    north_velocity: float
    east_velocity: float
    north_velocity_stdev: float = 0.0
    east_velocity_stdev: float = 0.0


@dataclass(frozen=True)
class GpsFix:
    """Satellite position fix in degrees with its standard deviations (m)."""

    stamp: float
    lat: float
    lon: float
    lat_stdev: float = 0.0
    lon_stdev: float = 0.0


@dataclass(frozen=True)
class VelocityReport:
    """Horizontal ground speed in m/s."""

    hor_speed: float


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two points given in degrees."""
    phi1, lam1, phi2, lam2 = map(math.radians, (lat1, lon1, lat2, lon2))
    dphi = phi2 - phi1
    dlam = lam2 - lam1
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def parse_traffic_light_message(text: str) -> tuple[int, int, int]:
    """Parse ``"id,state,time_left"``; trailing text is ignored.

    Raises ValueError when the text does not start with three integers.
    """
    match = _MESSAGE_PATTERN.match(text)
    if match is None:
        raise ValueError(f"malformed traffic light message: {text!r}")
    light_id, state, time_left = (int(group) for group in match.groups())
    return light_id, state, time_left


class SignalIO:
    """Feeds sensor data and traffic light updates into a controller and emits speed commands."""

    def __init__(
        self,
        controller: VehicleController,
        publish: Callable[[float], None],
        target_speed: float = DEFAULT_TARGET_SPEED,
    ) -> None:
        self.controller = controller
        self.publish = publish
        self.target_speed = float(target_speed)

        self.gps_ref_set = False
        self.accelerating_to_target = True
        self.lat0 = 0.0
        self.lon0 = 0.0
        self.gps_distance = 0.0
        self.gps_std = 1.0
        self.imu_distance = 0.0
        self.imu_std = 1.0
        self.last_imu_time: float | None = None
        self.last_gps_time = 0.0
        self._command_index = 0
        self._lock = threading.RLock()

    def on_gps(self, msg: GpsFix) -> None:
        """Take the first fix as the origin; later fixes give a distance from it."""
        with self._lock:
            if not self.gps_ref_set:
                self.lat0 = msg.lat
                self.lon0 = msg.lon
                self.gps_ref_set = True
                return
            self.last_gps_time = msg.stamp
            self.gps_distance = haversine_distance(msg.lat, msg.lon, self.lat0, self.lon0)
            self.gps_std = msg.lat_stdev + msg.lon_stdev

    def on_imu(self, msg: ImuSample) -> None:
        """Integrate velocity into distance and fuse it with a fresh GPS distance."""
        with self._lock:
            if self.last_imu_time is None:
                self.last_imu_time = msg.stamp
                return

            dt = msg.stamp - self.last_imu_time
            gps_fresh = msg.stamp - self.last_gps_time < GPS_STALE_AFTER

            velocity = math.hypot(msg.north_velocity, msg.east_velocity)
            self.imu_distance += velocity * dt
            self.imu_std = msg.north_velocity_stdev + msg.east_velocity_stdev
            self.last_imu_time = msg.stamp

            if gps_fresh:
                total_std = self.gps_std + self.imu_std
                w_gps = self.imu_std / total_std if total_std else math.nan
                w_imu = 1.0 - w_gps
                self.controller.update_position(
                    w_gps * self.gps_distance + w_imu * self.imu_distance
                )
            else:
                self.controller.update_position(self.imu_distance)

    def on_speed(self, msg: VelocityReport) -> None:
        with self._lock:
            self.controller.update_speed(msg.hor_speed)

    def handle_traffic_message(self, text: str) -> tuple[int, int, int] | None:
        """Apply a traffic light update; returns the parsed message, or None if malformed."""
        try:
            light_id, state, time_left = parse_traffic_light_message(text)
        except ValueError:
            _log.debug("Ignoring malformed traffic light message: %r", text)
            return None
        with self._lock:
            self.controller.set_traffic_light_condition(state, time_left)
        _log.info("Traffic light update: state=%d, time=%d", state, time_left)
        return light_id, state, time_left

    def control_step(self) -> float | None:
        """Publish the next speed command and return it, or None at the end of the plan."""
        with self._lock:
            current_speed = self.controller.last_speed
            if self.accelerating_to_target and current_speed < self.target_speed:
                command = min(current_speed + SPEED_RAMP_STEP, self.target_speed)
                self.publish(command)
                return command
            self.accelerating_to_target = False

            trajectory = self.controller.trajectory
            if self._command_index >= len(trajectory):
                _log.warning("End of trajectory.")
                return None
            command = trajectory[self._command_index].speed
            self._command_index += 1
        self.publish(command)
        return command

    def trajectory_step(self) -> None:
        with self._lock:
            self.controller.generate_trajectory()

    def serve_traffic_lights(
        self,
        host: str = "0.0.0.0",
        port: int = TRAFFIC_LIGHT_PORT,
        stop_event: threading.Event | None = None,
    ) -> None:
        """Accept one signal controller connection and apply its updates until stopped."""
        stop = threading.Event() if stop_event is None else stop_event
        with socket.create_server((host, port), backlog=1) as server:
            server.settimeout(_POLL_INTERVAL)
            _log.info("Waiting for client...")
            client = _accept(server, stop)
            if client is None:
                return
            with client:
                client.settimeout(_POLL_INTERVAL)
                while not stop.is_set():
                    try:
                        data = client.recv(_RECV_SIZE)
                    except TimeoutError:
                        continue
                    if not data:
                        break
                    self.handle_traffic_message(data.decode("ascii", errors="replace"))


def _accept(server: socket.socket, stop: threading.Event) -> socket.socket | None:
    while not stop.is_set():
        try:
            client, _ = server.accept()
        except TimeoutError:
            continue
        return client
    return None


def _run_periodic(stop: threading.Event, tasks: Iterable[tuple[float, Callable[[], object]]]) -> None:
    schedule = [[time.monotonic() + period, period, task] for period, task in tasks]
    while not stop.is_set():
        now = time.monotonic()
        for entry in schedule:
            due, period, task = entry
            if due <= now:
                task()
                entry[0] = max(due + period, now)
        stop.wait(max(0.0, min(entry[0] for entry in schedule) - time.monotonic()))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Plan speed commands for approaching a signalised intersection."
    )
    parser.add_argument("--expected-speed", type=float, default=10.0)
    parser.add_argument("--red-duration", type=float, default=35.0)
    parser.add_argument("--yellow-duration", type=float, default=3.0)
    parser.add_argument("--green-duration", type=float, default=25.0)
    parser.add_argument("--target-speed", type=float, default=DEFAULT_TARGET_SPEED)
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=TRAFFIC_LIGHT_PORT)
    parser.add_argument("--control-period", type=float, default=0.1)
    parser.add_argument("--trajectory-period", type=float, default=1.0)
    parser.add_argument("--output-dir", default=".")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the controller; speed commands are written to stdout as ``linear_x,angular_z``."""
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    _log.info("Vehicle controller node started.")

    controller = VehicleController(
        expected_speed=args.expected_speed,
        red_duration=args.red_duration,
        yellow_duration=args.yellow_duration,
        green_duration=args.green_duration,
        output_dir=args.output_dir,
    )

    def publish(speed: float) -> None:
        print(f"{speed:g},{0.0:g}", flush=True)

    node = SignalIO(controller, publish, args.target_speed)
    stop = threading.Event()

    def listen() -> None:
        try:
            node.serve_traffic_lights(args.host, args.port, stop)
        except OSError as exc:
            _log.error("Bind/listen failed: %s", exc)

    listener = threading.Thread(target=listen, name="traffic-lights", daemon=True)
    listener.start()
    try:
        _run_periodic(
            stop,
            [(args.control_period, node.control_step), (args.trajectory_period, node.trajectory_step)],
        )
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        listener.join(timeout=1.0)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())