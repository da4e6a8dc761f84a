"""Mock functions and a fake mail service for testing."""

from __future__ import annotations

import asyncio
import threading

from lmchat.errors import FunctionError
from lmchat.functions.base import FunctionDefinition, ParameterSpec
from lmchat.functions.mail import MailActionResult

ECHO = FunctionDefinition(
    name="echo",
    description="Echo back the input message",
    parameters={"message": ParameterSpec("string", "Message to echo")},
    required=("message",),
)

SLOW = FunctionDefinition(
    name="slow",
    description="Sleeps for the given number of seconds",
    parameters={"seconds": ParameterSpec("number", "How long to sleep")},
    required=("seconds",),
)

FAILING = FunctionDefinition(
    name="failing",
    description="Always reports a failure to the model",
)

BROKEN = FunctionDefinition(
    name="broken",
    description="Raises an unexpected exception",
)

UNITS = FunctionDefinition(
    name="convert",
    description="Convert a temperature",
    parameters={
        "value": ParameterSpec("number", "Temperature value"),
        "unit": ParameterSpec("string", "Target unit", enum=("C", "F")),
    },
    required=("value", "unit"),
)


def echo(message: str) -> str:
    return message


async def slow(seconds: float) -> str:
    await asyncio.sleep(seconds)
    return "done"


def failing() -> None:
    raise FunctionError("the mailbox is locked")


def broken() -> None:
    raise RuntimeError("implementation bug")


def convert(value: float, unit: str) -> float:
    return value * 9 / 5 + 32 if unit == "F" else (value - 32) * 5 / 9


class ThreadRecorder:
    """Sync function that records which thread it ran on."""

    definition = FunctionDefinition(name="where", description="Report the worker thread")

    def __init__(self) -> None:
        self.thread_ids: list[int] = []

    def __call__(self) -> str:
        self.thread_ids.append(threading.get_ident())
        return "ok"


class FakeMailService:
    """In-memory stand-in for the mail subsystem."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []
        self.scheduled = []
        self.listeners = []
        self.analysis_prompts = []

    async def send_email(self, composition):
        if self.fail:
            return MailActionResult(success=False, error="SMTP unavailable")
        self.sent.append(composition)
        return MailActionResult(success=True, data={"messageId": f"msg-{len(self.sent)}"})

    async def schedule_email(self, email):
        self.scheduled.append(email)
        return MailActionResult(success=True, data={"scheduledId": f"sched-{len(self.scheduled)}"})

    async def listen_for_emails(self, senders, *, subject=None, labels=None, on_email=None):
        self.listeners.append((senders, subject, labels, on_email))
        return MailActionResult(success=True, data=f"listener-{len(self.listeners)}")

    async def analysis(self, prompt, context):
        self.analysis_prompts.append((prompt, context))
        if self.fail:
            return MailActionResult(success=False, error="model offline")
        return MailActionResult(success=True, data="3 emails need a reply")

    async def recent_emails(self, count):
        return [{"id": f"e{i}", "subject": f"Subject {i}"} for i in range(count)]
