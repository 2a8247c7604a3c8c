"""Wire representation of iorpc packets.

A packet is the single unit exchanged over the channel. Calls, responses and
control messages all share one shape::

    {"apiFunc": str | int, "cbId": int | false, "args": [...], "argsTransform": [...] | {...}}

Responses are calls addressed to the numeric call-ID the caller allocated, so
there is no separate response message. Structured values inside ``args`` are
left untouched here; the channel is expected to transport them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Final, Literal

THROW_ERROR: Final[str] = "iorpcThrowError"
UNBIND: Final[str] = "iorpcUnbind"
CONTROL_TAGS: Final[frozenset[str]] = frozenset({THROW_ERROR, UNBIND})

# Marker stored in transform tree leaves once the call-ID has been spliced in
TRANSFORM_LEAF: Final[int] = 1

NoResponse = Literal[False]
ArgsTransform = list[int] | dict[Any, Any]


def is_int_not_bool(x: object) -> bool:
    """Check if x is an int but not a bool.

    ``True`` and ``False`` must never alias call-IDs 1 and 0.
    """
    return isinstance(x, int) and not isinstance(x, bool)


@dataclass(slots=True)
class Packet:
    """One message on the channel.

    Attributes:
        api_func: Exported function name, call-ID, or control tag.
        cb_id: Call-ID for the response, or False for fire-and-forget.
        args: Positional arguments with callables replaced by call-IDs.
        args_transform: Where call-IDs were substituted in ``args``.
    """

    api_func: str | int
    cb_id: int | NoResponse = False
    args: list[Any] = field(default_factory=list)
    args_transform: ArgsTransform = field(default_factory=list)

    @property
    def expects_response(self) -> bool:
        return self.cb_id is not False

    @property
    def is_control(self) -> bool:
        return isinstance(self.api_func, str) and self.api_func in CONTROL_TAGS

    def to_json(self) -> dict[str, Any]:
        """Convert to the wire mapping."""
        return {
            "apiFunc": self.api_func,
            "cbId": self.cb_id,
            "args": self.args,
            "argsTransform": self.args_transform,
        }

    @staticmethod
    def from_json(obj: Any) -> Packet:
        """Parse and validate a wire mapping."""
        if not isinstance(obj, dict):
            msg = f"Packet must be an object, got {type(obj).__name__}"
            raise ValueError(msg)

        api_func = obj.get("apiFunc")
        if not isinstance(api_func, str) and not is_int_not_bool(api_func):
            msg = f"Invalid apiFunc: {api_func!r}"
            raise ValueError(msg)

        cb_id = obj.get("cbId", False)
        if cb_id is not False and not is_int_not_bool(cb_id):
            msg = f"Invalid cbId: {cb_id!r}"
            raise ValueError(msg)

        args = obj.get("args", [])
        if not isinstance(args, list):
            msg = f"args must be an array, got {type(args).__name__}"
            raise ValueError(msg)

        transform = obj.get("argsTransform", [])
        if isinstance(transform, list):
            if not all(is_int_not_bool(i) for i in transform):
                msg = "Flat argsTransform must only hold integer positions"
                raise ValueError(msg)
        elif not isinstance(transform, dict):
            msg = f"argsTransform must be an array or object, got {type(transform).__name__}"
            raise ValueError(msg)

        return Packet(api_func, cb_id, args, transform)


def coerce_packet(message: Packet | dict[str, Any]) -> Packet:
    """Accept either a Packet or its wire mapping."""
    if isinstance(message, Packet):
        return message
    return Packet.from_json(message)


def serialize_packet(packet: Packet) -> str:
    """Serialize a packet to a JSON string."""
    return json.dumps(packet.to_json(), separators=(",", ":"))


def parse_packet(data: str | bytes) -> Packet:
    """Parse a JSON string into a packet.

    Raises:
        ValueError: If the data is not valid JSON or not a valid packet
    """
    try:
        obj = json.loads(data)
    except json.JSONDecodeError as e:
        msg = f"Invalid JSON: {e}"
        raise ValueError(msg) from e
    return Packet.from_json(obj)
