# signalpilot

Speed planning for a vehicle that approaches a signalised intersection.

signalpilot takes the vehicle's position and speed, the state of the traffic light and
the time left in the light's current phase. From these it works out a speed profile that
brings the vehicle to the light during a green phase. Where the vehicle cannot make the
current green, the profile slows it down or holds it stopped.

## Modules

### `signalpilot.controller`

`VehicleController(expected_speed=10.0, red_duration=35.0, yellow_duration=3.0, green_duration=25.0, traffic_light_position=160.0, output_dir=".")` holds the vehicle state and the plan.

- `update_speed(speed)` and `update_yaw_rate(yaw_rate)` store the latest measurements.
- `update_position(position)` stores the position. It also appends a row to `actual_trajectory.csv` in `output_dir`, with columns `timestamp,position,speed,angular_velocity`.
- `set_traffic_light_condition(state, time_to_next)` takes a light state and the time left in tenths of a second. It sets `time_to_next_phase`.
  - The light states are `LightState.RED` (3), `LightState.GREEN` (6) and `LightState.YELLOW` (8).
  - An unknown state is logged as a warning and treated like red.
  - A value longer than the full light cycle is wrapped into it.
- `generate_trajectory()` rebuilds `trajectory`, a list of `TrajectoryPoint(position, speed, angular_velocity)` spaced 0.1 s apart, and returns it. It also appends the points to `predicted_trajectory.csv`, with columns `trajectory_id,timestamp,position,speed,angular_velocity`.

`earliest_arrival_time(distance, current_speed, expected_speed)` gives the earliest time in which the vehicle can cover a distance.

### `signalpilot.signal_io`

`SignalIO(controller, publish, target_speed=5.0)` connects sensor data and traffic-light updates to a controller.

- `on_gps(GpsFix(...))` handles a position fix. The first fix becomes the origin. Each later fix gives a great-circle distance from the origin, computed with `haversine_distance`.
- `on_imu(ImuSample(...))` integrates the horizontal velocity into a distance. It then updates the controller's position:
  - When the last GPS fix is less than 0.3 s old, it passes a blend of the GPS and inertial distances, weighted by their standard deviations.
  - Otherwise it passes the inertial distance alone.
- `on_speed(VelocityReport(hor_speed))` passes the ground speed to the controller.
- `handle_traffic_message(text)` applies an `id,state,time_left` message and returns `(id, state, time_left)`. A malformed message returns `None`. `parse_traffic_light_message(text)` parses such a message and raises `ValueError` when it is malformed.
- `control_step()` passes one speed command to `publish` and also returns it.
  - While the vehicle is below `target_speed`, the command ramps up in steps of 0.2 m/s.
  - After that, it steps through the speeds of the planned trajectory.
  - At the end of the plan it returns `None`.
- `trajectory_step()` regenerates the plan.
- `serve_traffic_lights(host="0.0.0.0", port=18080, stop_event=None)` accepts one TCP client and applies its messages until the client disconnects or the event is set.

### `signalpilot.sender`

`VehicleSender` keeps the latest command, set with `update_twist(linear_x, angular_z)`.

- `format_command()` renders the command as `linear_x,angular_z;`.
- `serve(host="0.0.0.0", port=10001, stop_event=None)` writes the current command to each client that connects and then closes the connection.

## Installation

```
pip install .
```

## Commands

`signalpilot-controller` does three things:

- It listens for traffic-light messages, on port 18080 by default.
- It writes a speed command to standard output every control period (default 0.1 s), as `linear_x,angular_z`.
- It regenerates the plan every trajectory period (default 1 s).

Its options are:

- `--expected-speed`
- `--red-duration`
- `--yellow-duration`
- `--green-duration`
- `--target-speed`
- `--host`
- `--port`
- `--control-period`
- `--trajectory-period`
- `--output-dir`

`signalpilot-sender` reads `linear_x,angular_z` lines from standard input and serves the latest one on port 10001 by default. Its options are `--host` and `--port`.

Both commands log to standard error, so the two can be chained:

```
signalpilot-controller | signalpilot-sender
```

## Library use

```python
from signalpilot.controller import LightState, VehicleController

controller = VehicleController(output_dir=".")
controller.update_speed(5.0)
controller.update_position(20.0)
controller.set_traffic_light_condition(LightState.RED, 150)  # 15.0 s of red left
points = controller.generate_trajectory()
```

## What it does not do

signalpilot does not read from a GNSS or inertial receiver itself. The
`signalpilot-controller` command has no sensor input. Position and speed reach the
controller only when your own code calls `SignalIO.on_gps`, `on_imu` and `on_speed`, or
the `VehicleController` update methods. Speed commands go only to the `publish` callable,
or to standard output in the command. There is no other message bus.

## Tests

```
pip install .[test]
pytest
```