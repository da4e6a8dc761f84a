"""Runs resolved directives against the function registry."""

from __future__ import annotations

import asyncio
import logging
import time

from lmchat.errors import (
    ArgumentError,
    FunctionError,
    ToolExecutionError,
    ToolTimeout,
    UnknownFunction,
)
from lmchat.functions.registry import FunctionRegistry
from lmchat.llm.directive_parser import Directive
from lmchat.types import FunctionCallRecord

logger = logging.getLogger(__name__)


class ToolExecutor:
    """
    Parameters
    ----------
    registry : FunctionRegistry
        Registered functions.
    timeout : float
        Max seconds for a single function execution.
    """

    def __init__(self, registry: FunctionRegistry, timeout: float = 30.0) -> None:
        self.registry = registry
        self.timeout = timeout

    async def execute(self, directive: Directive) -> FunctionCallRecord:
        """
        Execute one directive and describe the outcome.

        Lookup, validation, timeout and ``FunctionError`` failures are
        folded into the returned record so the model can react to them.
        Any other exception from the implementation is raised as
        ``ToolExecutionError``.
        """
        name, arguments = directive.name, directive.arguments
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self.registry.invoke(name, arguments),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            err = ToolTimeout(name, self.timeout)
            logger.warning("%s", err.message)
            return FunctionCallRecord(
                name=name, arguments=arguments, error=err.message, error_code=err.code
            )
        except (UnknownFunction, ArgumentError, FunctionError) as e:
            logger.info("Function %s rejected: %s", name, e.message)
            return FunctionCallRecord(
                name=name, arguments=arguments, error=e.message, error_code=e.code
            )
        except Exception as e:
            logger.exception("Function %s raised", name)
            raise ToolExecutionError(name, e) from e

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Function %s completed in %dms", name, duration_ms)
        return FunctionCallRecord(name=name, arguments=arguments, result=result)
