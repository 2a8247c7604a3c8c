"""Local API table and handler execution context."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping

if TYPE_CHECKING:
    from iorpc.stubs import RemoteApi


@dataclass(frozen=True, slots=True)
class CallContext:
    """Execution context handed to handlers that declare a ``ctx`` parameter.

    Example:
        def subscribe(topic, on_event, *, ctx):
            ctx.remote.no_wait.log(f"{ctx.pending()} entries pending")
    """

    remote: RemoteApi
    pending: Callable[[], int]


class LocalApi:
    """Functions this side exposes to the peer, looked up by name.

    Accepts either a mapping of ``name -> callable`` or any object, in which
    case its public (non-underscore) callables are exposed:

        class Api:
            def add(self, a, b):
                return a + b

        LocalApi(Api())
    """

    __slots__ = ('_source', '_is_mapping')

    def __init__(self, source: Mapping[str, Callable[..., Any]] | Any | None = None) -> None:
        if isinstance(source, LocalApi):
            source = source._source
        self._source = {} if source is None else source
        self._is_mapping = isinstance(self._source, Mapping)

    def lookup(self, name: str) -> Callable[..., Any] | None:
        """Return the callable registered under ``name``, if any."""
        if self._is_mapping:
            fn = self._source.get(name)
            return fn if callable(fn) else None

        if name.startswith('_'):
            return None
        fn = getattr(self._source, name, None)
        return fn if callable(fn) else None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None


def accepts_context(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    param = params.get("ctx")
    return param is not None and param.kind in (
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
        inspect.Parameter.KEYWORD_ONLY,
    )
