"""
Mail action functions.

These functions expose a mail subsystem to the model.  The subsystem itself
(sending, scheduling, inbox monitoring, analysis) lives outside the engine and
is reached through the :class:`MailActionService` protocol; the functions
here only translate validated call arguments into service requests and the
service's results into values the model can read.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, runtime_checkable

from lmchat.errors import FunctionError
from lmchat.functions.base import FunctionDefinition, ParameterSpec
from lmchat.functions.registry import FunctionRegistry

logger = logging.getLogger(__name__)

_HTML_TAG_RE = re.compile(r"<[^>]*>")


# ---------------------------------------------------------------------------
# Service contract
# ---------------------------------------------------------------------------


@dataclass
class EmailComposition:
    to: list[str]
    subject: str
    body: str
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    is_html: bool = False


@dataclass
class ScheduledEmail:
    to: list[str]
    subject: str
    body: str
    scheduled_time: datetime


@dataclass
class MailActionResult:
    success: bool
    data: Any = None
    error: str | None = None


@runtime_checkable
class MailActionService(Protocol):
    async def send_email(self, composition: EmailComposition) -> MailActionResult: ...

    async def schedule_email(self, email: ScheduledEmail) -> MailActionResult: ...

    async def listen_for_emails(
        self,
        senders: list[str],
        *,
        subject: str | None = None,
        labels: list[str] | None = None,
        on_email: Callable[[dict], None] | None = None,
    ) -> MailActionResult: ...

    async def analysis(self, prompt: str, context: dict[str, Any]) -> MailActionResult: ...

    async def recent_emails(self, count: int) -> list[dict]: ...


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

SEND_EMAIL = FunctionDefinition(
    name="sendEmail",
    description="Send a new email",
    parameters={
        "to": ParameterSpec("array", "Array of recipient email addresses", item_type="string"),
        "subject": ParameterSpec("string", "Email subject line"),
        "body": ParameterSpec("string", "Email body content"),
        "cc": ParameterSpec("array", "Array of CC recipient email addresses", item_type="string"),
        "bcc": ParameterSpec("array", "Array of BCC recipient email addresses", item_type="string"),
        "isHtml": ParameterSpec("boolean", "Whether the body is HTML formatted"),
    },
    required=("to", "subject", "body"),
)

SCHEDULE_EMAIL = FunctionDefinition(
    name="scheduleEmail",
    description="Schedule an email to be sent later",
    parameters={
        "to": ParameterSpec("array", "Array of recipient email addresses", item_type="string"),
        "subject": ParameterSpec("string", "Email subject line"),
        "body": ParameterSpec("string", "Email body content"),
        "scheduledTime": ParameterSpec("string", "ISO 8601 date string for when to send"),
    },
    required=("to", "subject", "body", "scheduledTime"),
)

LISTEN_FOR_EMAILS = FunctionDefinition(
    name="listenForEmails",
    description="Start listening for new emails from specific senders",
    parameters={
        "from": ParameterSpec(
            "array", "Array of email addresses to monitor for incoming emails", item_type="string"
        ),
        "subject": ParameterSpec("string", "Optional subject filter (emails containing this text)"),
        "labels": ParameterSpec("array", "Optional array of label IDs to filter by", item_type="string"),
        "notificationMessage": ParameterSpec(
            "string", "Message to show when a matching email arrives"
        ),
    },
    required=("from",),
)

ANALYSIS = FunctionDefinition(
    name="analysis",
    description="Run analysis on email content or data using an LLM prompt",
    parameters={
        "prompt": ParameterSpec("string", "The analysis prompt/question to run"),
        "emailBody": ParameterSpec(
            "string", "The email body content to analyze (plain text or HTML)"
        ),
        "includeRecentEmails": ParameterSpec(
            "boolean", "Whether to include recent emails in the analysis context"
        ),
        "emailCount": ParameterSpec(
            "integer", "Number of recent emails to include (if includeRecentEmails is true)"
        ),
        "customData": ParameterSpec(
            "object", "Additional custom data to include in the analysis"
        ),
    },
    required=("prompt",),
)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


def parse_iso_datetime(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise FunctionError(f"scheduledTime is not an ISO 8601 date: {value!r}") from e


class MailFunctions:
    """Binds the mail function catalog to a concrete service."""

    def __init__(self, service: MailActionService, *, recent_email_default: int = 10):
        self._service = service
        self._recent_default = recent_email_default

    async def send_email(self, **args: Any) -> dict:
        composition = EmailComposition(
            to=list(args["to"]),
            subject=args["subject"],
            body=args["body"],
            cc=list(args.get("cc") or []),
            bcc=list(args.get("bcc") or []),
            is_html=bool(args.get("isHtml", False)),
        )
        result = await self._service.send_email(composition)
        data = result.data or {}
        return {
            "success": result.success,
            "messageId": data.get("messageId") if isinstance(data, dict) else None,
            "message": "Email sent successfully"
            if result.success
            else result.error or "Failed to send email",
        }

    async def schedule_email(self, **args: Any) -> dict:
        scheduled = ScheduledEmail(
            to=list(args["to"]),
            subject=args["subject"],
            body=args["body"],
            scheduled_time=parse_iso_datetime(args["scheduledTime"]),
        )
        result = await self._service.schedule_email(scheduled)
        data = result.data or {}
        return {
            "success": result.success,
            "scheduledId": data.get("scheduledId") if isinstance(data, dict) else None,
            "message": "Email scheduled successfully"
            if result.success
            else result.error or "Failed to schedule email",
        }

    async def listen_for_emails(self, **args: Any) -> dict:
        senders = list(args["from"])
        notice = args.get("notificationMessage") or "New email received from monitored sender"

        def on_email(email: dict) -> None:
            logger.info(
                "Email received from %s (%s): %s",
                email.get("from"),
                email.get("subject"),
                notice,
            )

        result = await self._service.listen_for_emails(
            senders,
            subject=args.get("subject"),
            labels=args.get("labels"),
            on_email=on_email,
        )
        if not result.success:
            return {"success": False, "message": result.error or "Failed to start listener"}
        return {
            "success": True,
            "message": f"Now monitoring emails from: {', '.join(senders)}",
            "listenerId": result.data,
        }

    async def analysis(self, **args: Any) -> str:
        prompt = args["prompt"]
        context: dict[str, Any] = {}

        email_body = args.get("emailBody")
        if email_body:
            clean = _HTML_TAG_RE.sub("", email_body).strip()
            prompt = f"{prompt}\n\nEmail Content:\n{clean}"

        if args.get("includeRecentEmails"):
            emails = await self._service.recent_emails(args.get("emailCount") or self._recent_default)
            context["emails"] = emails
            prompt += f"\n\nContext: {len(emails)} recent emails included for analysis"

        custom = args.get("customData")
        if custom:
            context["data"] = custom
            prompt += f"\n\nAdditional Data: {json.dumps(custom)}"

        result = await self._service.analysis(prompt, context)
        if not result.success:
            return f"Analysis failed: {result.error or 'Unknown error'}"
        if isinstance(result.data, str):
            return result.data
        return json.dumps(result.data, indent=2)


def register_mail_functions(
    registry: FunctionRegistry,
    service: MailActionService,
    *,
    overwrite: bool = False,
) -> list[str]:
    fns = MailFunctions(service)
    catalog = [
        (SEND_EMAIL, fns.send_email),
        (SCHEDULE_EMAIL, fns.schedule_email),
        (LISTEN_FOR_EMAILS, fns.listen_for_emails),
        (ANALYSIS, fns.analysis),
    ]
    for definition, impl in catalog:
        registry.register(definition, impl, overwrite=overwrite)
    return [d.name for d, _ in catalog]
