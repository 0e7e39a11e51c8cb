from .controller import Action, AppState, apply_action
from .protocol import Actuator, Direction, SetDirection, SetSpeed, decode_telemetry, encode_command
from .telemetry import ActuatorTelemetry
from .transport import SerialLink

__all__ = [
    "Action",
    "Actuator",
    "ActuatorTelemetry",
    "AppState",
    "Direction",
    "SerialLink",
    "SetDirection",
    "SetSpeed",
    "apply_action",
    "decode_telemetry",
    "encode_command",
]
