"""User-facing calling surface and callback stand-ins.

``RemoteApi`` turns attribute access into calls on the peer. Names are not
checked locally; an unknown name only fails once the peer answers with a
"not registered" error.

``RemoteCallback`` replaces a call-ID received from the peer. Calling it
invokes the peer's original function; ``unbind()`` tells the peer to drop it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from iorpc.session import IorpcSession


class RemoteApi:
    """Name-indexed calling surface for the peer's API.

    Example:
        ```python
        total = await remote.add(2, 3)
        remote.no_wait.log("fire and forget")
        await remote["name-with-dashes"]()
        ```
    """
    __slots__ = ('_session', '_no_wait')

    def __init__(self, session: IorpcSession, no_wait: bool = False) -> None:
        object.__setattr__(self, "_session", session)
        object.__setattr__(self, "_no_wait", no_wait)

    def __getattr__(self, name: str) -> Callable[..., asyncio.Future[Any] | None]:
        if name.startswith("_"):
            msg = f"'{type(self).__name__}' object has no attribute '{name}'"
            raise AttributeError(msg)
        return self._caller(name)

    def __getitem__(self, api_func: str | int) -> Callable[..., asyncio.Future[Any] | None]:
        return self._caller(api_func)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("RemoteApi is read-only")

    @property
    def no_wait(self) -> RemoteApi:
        """A view whose calls expect no response and return None."""
        return RemoteApi(self._session, no_wait=True)

    noWait = no_wait

    def _caller(self, api_func: str | int) -> Callable[..., asyncio.Future[Any] | None]:
        session = self._session
        no_wait = self._no_wait

        def caller(*args: Any) -> asyncio.Future[Any] | None:
            return session.call(api_func, *args, no_wait=no_wait)

        caller.__name__ = str(api_func)
        caller.__qualname__ = f"RemoteApi.{api_func}"
        return caller

    def __repr__(self) -> str:
        suffix = ".no_wait" if self._no_wait else ""
        return f"RemoteApi({self._session!r}){suffix}"


class RemoteCallback:
    """Local stand-in for a function the peer passed as an argument."""
    __slots__ = ('_session', 'call_id')

    def __init__(self, session: IorpcSession, call_id: int) -> None:
        self._session = session
        self.call_id = call_id

    def __call__(self, *args: Any) -> asyncio.Future[Any]:
        """Invoke the peer's function; the future resolves with its return value."""
        return self._session.call(self.call_id, *args)

    def no_wait(self, *args: Any) -> None:
        """Invoke the peer's function without waiting for a result."""
        self._session.call(self.call_id, *args, no_wait=True)

    def unbind(self) -> None:
        """Ask the peer to release the function; later calls report it unavailable."""
        self._session.send_unbind(self.call_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteCallback):
            return NotImplemented
        return self._session is other._session and self.call_id == other.call_id

    def __hash__(self) -> int:
        return hash((id(self._session), self.call_id))

    def __repr__(self) -> str:
        return f"RemoteCallback({self.call_id})"
