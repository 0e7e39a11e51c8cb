from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional

from .protocol import MAX_SPEED, Actuator, Command, Direction, SetDirection, SetSpeed
from .telemetry import ActuatorTelemetry

SPEED_STEP = 1000
SPEED_BOOST_STEP = 5000


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class Action(Enum):
    SPEED_UP = auto()
    SPEED_DOWN = auto()
    BOOST_UP = auto()
    BOOST_DOWN = auto()
    DIRECTION_BACKWARD = auto()
    DIRECTION_FORWARD = auto()
    STOP = auto()
    SWITCH_ACTUATOR = auto()
    QUIT = auto()


@dataclass(slots=True)
class AppState:
    speed: int = 0
    direction: Direction = Direction.FORWARD
    actuator: Actuator = Actuator.PRIMARY
    status_message: str = "Ready"
    telemetry: Optional[ActuatorTelemetry] = None
    max_speed: int = MAX_SPEED

    def increase_speed(self, amount: int) -> int:
        self.speed = _clamp(self.speed + int(amount), 0, self.max_speed)
        return self.speed

    def decrease_speed(self, amount: int) -> int:
        self.speed = _clamp(self.speed - int(amount), 0, self.max_speed)
        return self.speed

    def set_direction(self, direction: Direction) -> None:
        self.direction = direction

    def stop(self) -> None:
        self.speed = 0

    def to_dict(self) -> dict:
        return {
            "speed": self.speed,
            "direction": self.direction.name,
            "actuator": self.actuator.name,
            "status_message": self.status_message,
            "length_m": None if self.telemetry is None else self.telemetry.length_m,
            "max_speed": self.max_speed,
        }


def apply_action(state: AppState, action: Action) -> List[Command]:
    """Mutate ``state`` for one operator action and return the commands to send.

    QUIT leaves the state untouched; the caller is expected to stop its loop.
    """
    if action is Action.SPEED_UP:
        state.increase_speed(SPEED_STEP)
    elif action is Action.SPEED_DOWN:
        state.decrease_speed(SPEED_STEP)
    elif action is Action.BOOST_UP:
        state.increase_speed(SPEED_BOOST_STEP)
    elif action is Action.BOOST_DOWN:
        state.decrease_speed(SPEED_BOOST_STEP)
    elif action is Action.STOP:
        state.stop()
    elif action is Action.DIRECTION_BACKWARD:
        state.set_direction(Direction.BACKWARD)
        return [SetDirection(Direction.BACKWARD, state.actuator)]
    elif action is Action.DIRECTION_FORWARD:
        state.set_direction(Direction.FORWARD)
        return [SetDirection(Direction.FORWARD, state.actuator)]
    elif action is Action.SWITCH_ACTUATOR:
        # the stop must reach the actuator we are leaving
        state.stop()
        previous = state.actuator
        state.actuator = previous.toggled()
        state.status_message = f"Switched to {state.actuator.label}"
        return [SetSpeed(0, previous)]
    else:
        return []

    return [SetSpeed(state.speed, state.actuator)]
