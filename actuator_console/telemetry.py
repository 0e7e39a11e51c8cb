from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from .protocol import decode_telemetry


@dataclass(slots=True)
class ActuatorTelemetry:
    length_m: float
    rx_monotonic_s: float

    @classmethod
    def from_frame(cls, frame: bytes, rx_monotonic_s: Optional[float] = None) -> "ActuatorTelemetry":
        return cls(
            length_m=decode_telemetry(frame),
            rx_monotonic_s=time.monotonic() if rx_monotonic_s is None else rx_monotonic_s,
        )

    def as_dict(self) -> dict:
        return {
            "length_m": self.length_m,
            "rx_monotonic_s": self.rx_monotonic_s,
        }
