"""Error types for iorpc.

Local protocol failures raise :class:`RpcError`. Anything that crossed the
channel surfaces as :class:`RemoteError`, which keeps the peer's message and
traceback text apart from the local stack.
"""

from __future__ import annotations

import traceback
from enum import Enum


class ErrorCode(Enum):
    """Categories of protocol level failures."""

    NOT_REGISTERED = "not_registered"
    CALLBACK_UNAVAILABLE = "callback_unavailable"
    BAD_PACKET = "bad_packet"
    EXHAUSTED = "exhausted"
    INTERNAL = "internal"


class RpcError(Exception):
    """A protocol level error raised on this side of the channel."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"RpcError({self.code.value!r}, {self.message!r})"

    @classmethod
    def not_registered(cls, name: str) -> RpcError:
        return cls(
            ErrorCode.NOT_REGISTERED,
            f"Function '{name}' is not registered for the iorpc API. "
            "Please verify it is properly defined and exposed.",
        )

    @classmethod
    def callback_unavailable(cls, call_id: int) -> RpcError:
        return cls(
            ErrorCode.CALLBACK_UNAVAILABLE,
            f"Callback '{call_id}' is unavailable. It might have been removed "
            "from the waiting queue (maxPendingResponses overflow) or via unbind().",
        )

    @classmethod
    def bad_packet(cls, message: str) -> RpcError:
        return cls(ErrorCode.BAD_PACKET, message)

    @classmethod
    def exhausted(cls, attempts: int) -> RpcError:
        return cls(
            ErrorCode.EXHAUSTED,
            f"No free call id found after {attempts} attempts",
        )

    @classmethod
    def internal(cls, message: str) -> RpcError:
        return cls(ErrorCode.INTERNAL, message)


class RemoteError(Exception):
    """An exception raised by the peer and forwarded over the channel.

    ``str(error)`` is the remote message. The remote traceback text, when the
    peer sent one, is kept in ``remote_stack`` and appended to the rendered
    local traceback as a note.
    """

    name = "RemoteError"

    def __init__(self, message: str, remote_stack: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.remote_stack = remote_stack or None
        if self.remote_stack:
            self.add_note(f"Remote traceback:\n{self.remote_stack.rstrip()}")

    def __repr__(self) -> str:
        return f"RemoteError({self.message!r})"


def format_stack(error: BaseException) -> str:
    """Render an exception with its traceback as plain text."""
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
