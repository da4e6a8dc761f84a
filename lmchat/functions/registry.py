from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Any

from lmchat.errors import ArgumentError, UnknownFunction
from lmchat.functions.base import FunctionDefinition, Implementation
from lmchat.functions.validation import ArgumentValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredFunction:
    definition: FunctionDefinition
    implementation: Implementation
    validator: ArgumentValidator


class FunctionRegistry:
    """
    Explicit name -> implementation mapping.

    The registry is built before the first session starts and then shared
    read-only by every session.
    """

    def __init__(self):
        self._functions: dict[str, RegisteredFunction] = {}

    def register(
        self,
        definition: FunctionDefinition,
        implementation: Implementation,
        *,
        overwrite: bool = False,
    ) -> None:
        if definition.name in self._functions and not overwrite:
            raise ValueError(f"Function already registered: {definition.name}")
        if not callable(implementation):
            raise TypeError(f"Implementation for {definition.name} is not callable")
        self._functions[definition.name] = RegisteredFunction(
            definition=definition,
            implementation=implementation,
            validator=ArgumentValidator(definition),
        )
        logger.debug("Registered function %s", definition.name)

    def unregister(self, name: str) -> None:
        self._functions.pop(name, None)

    def get(self, name: str) -> FunctionDefinition | None:
        entry = self._functions.get(name)
        return entry.definition if entry else None

    def require(self, name: str) -> FunctionDefinition:
        d = self.get(name)
        if d is None:
            raise UnknownFunction(name)
        return d

    def list(self) -> list[FunctionDefinition]:
        return [self._functions[n].definition for n in sorted(self._functions)]

    def names(self) -> list[str]:
        return sorted(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def to_schema(self) -> list[dict]:
        return [d.to_dict() for d in self.list()]

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def validate(self, name: str, arguments: Any) -> None:
        """Raise ``UnknownFunction`` or ``ArgumentError`` for a bad call."""
        entry = self._functions.get(name)
        if entry is None:
            raise UnknownFunction(name)
        if not isinstance(arguments, dict):
            raise ArgumentError(name, "arguments must be a JSON object")
        ok, err = entry.validator.validate(arguments)
        if not ok:
            raise ArgumentError(name, err or "validation failed")

    async def invoke(self, name: str, arguments: dict[str, Any]) -> Any:
        """
        Validate *arguments* and run the implementation.

        Coroutine functions are awaited directly; plain functions run in a
        worker thread so they cannot stall the event loop.  Exceptions
        raised by the implementation propagate unchanged.
        """
        self.validate(name, arguments)
        impl = self._functions[name].implementation
        if inspect.iscoroutinefunction(impl):
            return await impl(**arguments)
        result = await asyncio.to_thread(impl, **arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "lmchat.functions",
        allow_distributions: set[str] | None = None,
        allow_functions: set[str] | None = None,
    ) -> int:
        """Load function catalogs from entry points.

        Each entry point must resolve to a callable taking no arguments and
        returning an iterable of ``(FunctionDefinition, implementation)``
        pairs.  Returns the number of functions registered.
        """
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            dist = getattr(ep, "dist", None)
            dist_name = getattr(dist, "name", None)
            if allow_distributions and dist_name and dist_name not in allow_distributions:
                continue
            provider = ep.load()
            for definition, implementation in provider():
                if allow_functions and definition.name not in allow_functions:
                    continue
                self.register(definition, implementation)
                loaded += 1
        return loaded
