from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

PROTOCOL_VERSION = 1

OP_SET_SPEED = 0x01
OP_SET_DIRECTION = 0x02

SET_SPEED_FRAME_SIZE = 4
SET_DIRECTION_FRAME_SIZE = 3
TELEMETRY_FRAME_SIZE = 8

MAX_SPEED = 0xFFFF


class Actuator(IntEnum):
    PRIMARY = 0
    SECONDARY = 1

    def toggled(self) -> "Actuator":
        return Actuator.SECONDARY if self is Actuator.PRIMARY else Actuator.PRIMARY

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Direction(IntEnum):
    BACKWARD = 0
    FORWARD = 1

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True, slots=True)
class SetSpeed:
    speed: int
    actuator: Actuator

    def __post_init__(self) -> None:
        if not 0 <= int(self.speed) <= MAX_SPEED:
            raise ValueError(f"speed out of u16 range: {self.speed}")

    def encode(self) -> bytes:
        return struct.pack("<BBH", OP_SET_SPEED, int(self.actuator), int(self.speed))


@dataclass(frozen=True, slots=True)
class SetDirection:
    direction: Direction
    actuator: Actuator

    def encode(self) -> bytes:
        return struct.pack("<BBB", OP_SET_DIRECTION, int(self.actuator), int(self.direction))


Command = Union[SetSpeed, SetDirection]


def encode_command(cmd: Command) -> bytes:
    if not isinstance(cmd, (SetSpeed, SetDirection)):
        raise TypeError(f"Not an actuator command: {cmd!r}")
    return cmd.encode()


def decode_telemetry(frame: bytes) -> float:
    if len(frame) != TELEMETRY_FRAME_SIZE:
        raise ValueError(f"Invalid telemetry frame length: {len(frame)}")
    return struct.unpack("<d", frame)[0]


def describe_command(cmd: Command) -> str:
    """Status line shown once a command has been written to the link."""
    if isinstance(cmd, SetSpeed):
        return f"Set speed to {cmd.speed}"
    if isinstance(cmd, SetDirection):
        return f"Set direction to {cmd.direction.name.lower()}"
    raise TypeError(f"Not an actuator command: {cmd!r}")
