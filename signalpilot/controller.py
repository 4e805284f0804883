"""Speed planning for a vehicle approaching a signalised intersection."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Iterator

_log = logging.getLogger(__name__)

PREDICTED_TRAJECTORY_FILE = "predicted_trajectory.csv"
ACTUAL_TRAJECTORY_FILE = "actual_trajectory.csv"
PREDICTED_HEADER = "trajectory_id,timestamp,position,speed,angular_velocity\n"
ACTUAL_HEADER = "timestamp,position,speed,angular_velocity\n"
TIME_STEP = 0.1


@dataclass(frozen=True)
class TrajectoryPoint:
    """One sample of a trajectory: position (m), speed (m/s), yaw rate (rad/s)."""

    position: float
    speed: float
    angular_velocity: float


class LightState(IntEnum):
    """Traffic light phases as reported by the signal controller."""

    RED = 3
    GREEN = 6
    YELLOW = 8


def _div(numerator: float, denominator: float) -> float:
    """Divide with IEEE semantics instead of raising on a zero denominator."""
    try:
        return numerator / denominator
    except ZeroDivisionError:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


def _sqrt(value: float) -> float:
    """Square root that yields NaN for negative input."""
    return math.nan if value < 0 else math.sqrt(value)


def _fmod(value: float, modulus: float) -> float:
    try:
        return math.fmod(value, modulus)
    except ValueError:
        return math.nan


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _time_grid(horizon: float) -> Iterator[float]:
    """Times from zero up to and including ``horizon`` in steps of TIME_STEP."""
    t = 0.0
    while t <= horizon:
        yield t
        t += TIME_STEP


def _first_index_after(times: list[float], threshold: float) -> int:
    """Index of the first sample after the start that lies beyond ``threshold``, else 0."""
    return next((i for i, t in enumerate(times) if i > 0 and t > threshold), 0)


def earliest_arrival_time(distance: float, current_speed: float, expected_speed: float) -> float:
    """Earliest time to cover ``distance`` when accelerating towards ``expected_speed``."""
    margin = expected_speed**2 - current_speed**2
    if distance > margin:
        return (expected_speed - current_speed) / 2.0 + _div(distance - margin, expected_speed)
    return _sqrt(distance + (current_speed / 2.0) ** 2) - current_speed / 2.0


class VehicleController:
    """Plans a speed profile that reaches the traffic light during a green phase."""

    def __init__(
        self,
        expected_speed: float = 10.0,
        red_duration: float = 35.0,
        yellow_duration: float = 3.0,
        green_duration: float = 25.0,
        traffic_light_position: float = 160.0,
        output_dir: str | Path = ".",
    ) -> None:
        self.expected_speed = float(expected_speed)
        self.red_duration = float(red_duration)
        self.yellow_duration = float(yellow_duration)
        self.green_duration = float(green_duration)
        self.traffic_light_position = float(traffic_light_position)
        self.output_dir = Path(output_dir)

        self.last_position = 0.0
        self.last_speed = 0.0
        self.last_yaw_rate = 0.0
        self.traffic_light_state = 0
        self.time_to_next_phase = 0.0
        self.trajectory_count = 0
        self.trajectory: list[TrajectoryPoint] = []
        self.actual_trajectory: list[TrajectoryPoint] = []

    @property
    def cycle_duration(self) -> float:
        return self.red_duration + self.yellow_duration + self.green_duration

    @property
    def predicted_path(self) -> Path:
        return self.output_dir / PREDICTED_TRAJECTORY_FILE

    @property
    def actual_path(self) -> Path:
        return self.output_dir / ACTUAL_TRAJECTORY_FILE

    def update_position(self, position: float) -> None:
        """Record a new measured position and append it to the actual trajectory log."""
        self.last_position = float(position)
        self.actual_trajectory.append(
            TrajectoryPoint(self.last_position, self.last_speed, self.last_yaw_rate)
        )
        self._save_actual_point(self.actual_trajectory[-1])

    def update_speed(self, speed: float) -> None:
        self.last_speed = float(speed)

    def update_yaw_rate(self, yaw_rate: float) -> None:
        self.last_yaw_rate = float(yaw_rate)

    def set_traffic_light_condition(self, state: int, time_to_next: int) -> None:
        """Update the light phase; ``time_to_next`` is given in tenths of a second."""
        self.traffic_light_state = state
        t = time_to_next / 10.0
        distance = self.traffic_light_position - self.last_position
        t_e = earliest_arrival_time(distance, self.last_speed, self.expected_speed)

        if state == LightState.RED:
            phase = t
        elif state == LightState.GREEN:
            phase = t_e if t > t_e else t + self.red_duration + self.yellow_duration
        elif state == LightState.YELLOW:
            phase = t + self.red_duration
        else:
            _log.warning("Unknown traffic light state received: %d", state)
            phase = t

        cycle = self.cycle_duration
        if phase > cycle:
            phase = _fmod(phase, cycle)
        self.time_to_next_phase = phase
        _log.info("State: %d | time_to_next_phase: %.2f s", state, phase)

    def generate_trajectory(self) -> list[TrajectoryPoint]:
        """Rebuild the planned trajectory in place, log it and return it."""
        distance = self.traffic_light_position - self.last_position
        v0 = self.last_speed
        ve = self.expected_speed
        horizon = self.time_to_next_phase
        yaw = self.last_yaw_rate

        t_e = earliest_arrival_time(distance, v0, ve)
        t_c = _div(3.0 * distance, v0 + ve - _sqrt(v0 * ve))
        times = list(_time_grid(horizon))

        if horizon <= t_e:
            points = [TrajectoryPoint(ve * t, ve, yaw) for t in times]
        elif horizon < t_c:
            a, b = self._cubic_coefficients(distance, horizon)
            points = [self._cubic_point(a, b, t) for t in times]
        else:
            wait = horizon - t_c
            a, b = self._cubic_coefficients(distance, t_c)
            t_stop = _div(-b, 3.0 * a)
            x_stop = self._cubic_point(a, b, t_stop).position
            i_stop = _first_index_after(times, t_stop)
            i_go = _first_index_after(times, t_stop + wait)
            stopped = TrajectoryPoint(x_stop, 0.0, yaw)
            points = [self._cubic_point(a, b, t) for t in times[:i_stop]]
            points.extend(stopped for _ in times[i_stop:i_go])
            points.extend(self._cubic_point(a, b, t - wait) for t in times[i_go:])

        self.trajectory[:] = points
        self._save_predicted()
        _log.info("Trajectory generated with %d points.", len(self.trajectory))
        self.trajectory_count += 1
        return self.trajectory

    def _cubic_coefficients(self, distance: float, duration: float) -> tuple[float, float]:
        v0 = self.last_speed
        ve = self.expected_speed
        a = _div(2.0 * distance, duration**3) + _div(ve + v0, duration**2)
        b = _div(3.0 * distance, duration**2) - _div(2.0 * v0 + ve, duration)
        return a, b

    def _cubic_point(self, a: float, b: float, t: float) -> TrajectoryPoint:
        c = self.last_speed
        position = a * t**3 + b * t**2 + c * t + self.last_position
        speed = 3.0 * a * t**2 + 2.0 * b * t + c
        return TrajectoryPoint(position, speed, self.last_yaw_rate)

    def _save_predicted(self) -> None:
        path = self.predicted_path
        existed = path.exists()
        stamp = _now_ms()
        try:
            with path.open("a", encoding="utf-8") as out:
                if not existed:
                    out.write(PREDICTED_HEADER)
                out.writelines(
                    f"{self.trajectory_count},{stamp},{pt.position:.6f},"
                    f"{pt.speed:.6f},{pt.angular_velocity:.6f}\n"
                    for pt in self.trajectory
                )
        except OSError:
            _log.error("Failed to open predicted trajectory file: %s", path)

    def _save_actual_point(self, point: TrajectoryPoint) -> None:
        path = self.actual_path
        existed = path.exists()
        try:
            with path.open("a", encoding="utf-8") as out:
                if not existed:
                    out.write(ACTUAL_HEADER)
                out.write(
                    f"{_now_ms()},{point.position:.6f},"
                    f"{point.speed:.6f},{point.angular_velocity:.6f}\n"
                )
        except OSError:
            _log.error("Failed to open actual trajectory file: %s", path)