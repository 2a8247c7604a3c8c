"""Argument codec: swaps callables for call-IDs and back.

Two modes, fixed per session:

Flat mode only looks at top-level arguments. Each callable is replaced by a
call-ID and its index is appended to a flat transform list::

    args=[1, <fn>, "x"]  ->  args=[1, 4711, "x"], transform=[1]

Nested mode walks dicts, lists and tuples at any depth. The transform is a tree
mirroring the path to every substitution, with leaves set to ``1``::

    args=[{"on": {"done": <fn>}, "n": 2}]
    ->  args=[{"on": {"done": 4711}, "n": 2}], transform={0: {"on": {"done": 1}}}

Only the branches that contained a callable are copied; everything else in the
outgoing args is shared with the caller's objects. The keys ``__proto__``,
``constructor`` and ``prototype`` are never followed or copied, so a peer
cannot steer the walk into host object internals.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Final, Iterable, Sequence

from iorpc.error import RpcError
from iorpc.wire import TRANSFORM_LEAF, ArgsTransform, is_int_not_bool

logger = logging.getLogger(__name__)

FORBIDDEN_KEYS: Final[frozenset[str]] = frozenset({"__proto__", "constructor", "prototype"})

DEFAULT_MAX_DEPTH: Final[int] = 200

Register = Callable[[Callable[..., Any]], int]
MakeCallback = Callable[[int], Any]


def is_function(value: object) -> bool:
    """Whether a value is shipped as a callback rather than as data."""
    return callable(value) and not isinstance(value, type)


def _is_container(value: object) -> bool:
    return isinstance(value, (dict, list, tuple))


def _items(node: Any) -> Iterable[tuple[Any, Any]]:
    if isinstance(node, dict):
        return [(k, v) for k, v in node.items() if k not in FORBIDDEN_KEYS]
    return list(enumerate(node))


def _container_key(container: Any, key: Any) -> Any:
    """Map a transform key onto a key of ``container``.

    Transform trees that crossed a JSON channel carry list indices as strings.
    Returns None if the key does not address anything in the container.
    """
    if isinstance(container, dict):
        if key in FORBIDDEN_KEYS:
            return None
        return key if key in container else None
    if isinstance(container, list):
        if isinstance(key, str):
            if not key.isdigit():
                return None
            key = int(key)
        if is_int_not_bool(key) and 0 <= key < len(container):
            return key
    return None


class ArgumentCodec:
    """Extracts callables from outgoing args and rehydrates incoming ones.

    Args:
        nested: Use nested mode instead of flat mode.
        max_depth: Maximum container nesting walked in nested mode.
    """
    __slots__ = ('nested', 'max_depth')

    def __init__(self, nested: bool = False, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.nested = nested
        self.max_depth = max_depth

    # ---------- Outgoing ----------

    def extract(self, args: Sequence[Any], register: Register) -> tuple[list[Any], ArgsTransform]:
        """Replace callables in ``args`` with call-IDs obtained from ``register``.

        The caller's objects are never mutated.

        Raises:
            ValueError: In nested mode, if the args contain a cycle or nest
                deeper than ``max_depth``. Nothing is registered in that case.
        """
        if not self.nested:
            return self._extract_flat(args, register)

        tree = self._filter(args, depth=0, path=set())
        copy = self._copy(args, tree)
        self._patch(tree, copy, register)
        return copy, tree

    def _extract_flat(self, args: Sequence[Any], register: Register) -> tuple[list[Any], list[int]]:
        out = list(args)
        transform: list[int] = []
        for i, value in enumerate(out):
            if is_function(value):
                out[i] = register(value)
                transform.append(i)
        return out, transform

    def _filter(self, node: Any, *, depth: int, path: set[int]) -> dict[Any, Any]:
        """Build the transform tree with the callables themselves at the leaves."""
        if depth > self.max_depth:
            raise ValueError(f"Max argument depth exceeded ({self.max_depth})")
        if id(node) in path:
            raise ValueError("Cannot send cyclic argument graph")

        path.add(id(node))
        tree: dict[Any, Any] = {}
        for key, value in _items(node):
            if is_function(value):
                tree[key] = value
            elif _is_container(value):
                subtree = self._filter(value, depth=depth + 1, path=path)
                if subtree:
                    tree[key] = subtree
        path.discard(id(node))
        return tree

    def _copy(self, node: Any, tree: dict[Any, Any]) -> Any:
        """Copy only the containers the transform tree touches."""
        if isinstance(node, dict):
            out: Any = {}
            for key, value in _items(node):
                out[key] = self._copy(value, tree[key]) if isinstance(tree.get(key), dict) else value
            return out

        out = []
        for key, value in enumerate(node):
            out.append(self._copy(value, tree[key]) if isinstance(tree.get(key), dict) else value)
        return out

    def _patch(self, tree: dict[Any, Any], target: Any, register: Register) -> None:
        """Register each leaf callable, splice its ID into the copy, mark the leaf."""
        for key, sub in tree.items():
            if isinstance(sub, dict):
                self._patch(sub, target[key], register)
            else:
                target[key] = register(sub)
                tree[key] = TRANSFORM_LEAF

    # ---------- Incoming ----------

    def rehydrate(self, args: list[Any], transform: ArgsTransform, make_callback: MakeCallback) -> list[Any]:
        """Replace the call-IDs recorded in ``transform`` with callables, in place.

        Raises:
            RpcError: If the transform shape does not match this codec's mode.
        """
        if not transform:
            return args

        if self.nested:
            if not isinstance(transform, dict):
                raise RpcError.bad_packet("Expected a nested argsTransform tree")
            self._rehydrate_tree(transform, args, make_callback, depth=0)
            return args

        if not isinstance(transform, list):
            raise RpcError.bad_packet("Expected a flat argsTransform list")
        for i in transform:
            key = _container_key(args, i)
            if key is None or not is_int_not_bool(args[key]):
                logger.debug("Ignoring argsTransform entry %r", i)
                continue
            args[key] = make_callback(args[key])
        return args

    def _rehydrate_tree(self, tree: dict[Any, Any], target: Any, make_callback: MakeCallback, *, depth: int) -> None:
        if depth > self.max_depth:
            raise RpcError.bad_packet(f"argsTransform deeper than {self.max_depth}")

        for raw_key, sub in tree.items():
            if raw_key in FORBIDDEN_KEYS:
                continue
            key = _container_key(target, raw_key)
            if key is None:
                logger.debug("Ignoring argsTransform key %r", raw_key)
                continue
            if isinstance(sub, dict):
                self._rehydrate_tree(sub, target[key], make_callback, depth=depth + 1)
            elif is_int_not_bool(target[key]):
                target[key] = make_callback(target[key])
            else:
                logger.debug("Ignoring non call-ID at argsTransform key %r", raw_key)
