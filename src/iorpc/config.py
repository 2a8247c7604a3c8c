"""Pydantic configuration model for iorpc sessions.

The model is only consulted at session construction and when routing decides
between error exposure modes; packets themselves stay plain dataclasses.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_PENDING_RESPONSES = 10_000


class IorpcConfig(BaseModel):
    """Configuration options for an iorpc session.

    Both snake_case names and the camelCase option names used on the wire
    side of other implementations are accepted.

    Attributes:
        max_pending_responses: Registry size above which the least recently
            acknowledged entries are evicted.
        allow_nested_functions: Extract callables at any depth of dicts and
            lists instead of only top-level arguments. Both peers must agree.
        expose_errors: Forward handler exceptions to the caller. When False
            the exception is re-raised out of the router instead.
        inject_to_this: Pass a ``ctx`` keyword to handlers that declare it.
        ignore_callback_unavailable: Drop calls addressed to evicted or
            unbound callbacks instead of reporting them.
        max_depth: Nesting limit for the nested argument walk.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="forbid",
    )

    max_pending_responses: int = Field(
        default=DEFAULT_MAX_PENDING_RESPONSES,
        gt=0,
        alias="maxPendingResponses",
        description="Eviction threshold for the pending registry",
    )
    allow_nested_functions: bool = Field(
        default=False,
        alias="allowNestedFunctions",
        description="Enable nested-mode argument codec",
    )
    expose_errors: bool = Field(default=True, alias="exposeErrors")
    inject_to_this: bool = Field(default=True, alias="injectToThis")
    ignore_callback_unavailable: bool = Field(
        default=False,
        alias="ignoreCallbackUnavailable",
    )
    max_depth: int = Field(default=200, gt=0, alias="maxDepth")

    @classmethod
    def from_options(
        cls,
        options: IorpcConfig | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> IorpcConfig:
        """Normalize user supplied options into a config instance."""
        if options is None:
            options = {}
        if isinstance(options, IorpcConfig):
            if not overrides:
                return options
            return options.model_copy(update=cls(**overrides).model_dump(exclude_unset=True))
        return cls(**{**dict(options), **overrides})
