"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from lmchat.functions.base import FunctionDefinition
from lmchat.session.models import ChatMessage, ChatRole
from lmchat.types import FunctionCallRecord

ROLE_COLORS = {
    ChatRole.USER: "blue",
    ChatRole.ASSISTANT: "green",
    ChatRole.ERROR: "red",
    ChatRole.SYSTEM: "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the lmchat CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_function_list(self, functions: list[FunctionDefinition]) -> None:
        if not functions:
            self.console.print("[dim]No functions registered.[/dim]")
            return

        table = Table(title="Registered Functions", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Parameters")
        table.add_column("Description")

        for d in functions:
            params = Text()
            for i, (pname, spec) in enumerate(d.parameters.items()):
                if i:
                    params.append(", ")
                style = "bold" if pname in d.required else "dim"
                params.append(f"{pname}: {spec.type}", style=style)
            table.add_row(d.name, params, d.description)

        self.console.print(table)

    def format_prompt(self, prompt: str) -> None:
        self.console.print(Panel(prompt, title="System prompt", expand=False))

    def format_function_call(self, record: FunctionCallRecord) -> None:
        args = escape(json.dumps(record.arguments, default=str))
        if record.error is not None:
            body = f"[bold]{record.name}[/bold]({args})\n[red]{escape(record.error)}[/red]"
            border = "red"
        else:
            result = escape(json.dumps(record.result, indent=2, default=str))
            body = f"[bold]{record.name}[/bold]({args})\n[green]->[/green] {result}"
            border = "cyan"
        self.console.print(Panel(body, title="Function call", border_style=border, expand=False))

    def format_error(self, message: str) -> None:
        self.console.print(f"[red]Error:[/red] {escape(message)}")

    def format_models(self, models: list[str], active: str | None = None) -> None:
        if not models:
            self.console.print("[yellow]No models loaded on the server.[/yellow]")
            return
        table = Table(title="Available Models")
        table.add_column("Model", style="cyan")
        for m in models:
            table.add_row(f"{m} [green](active)[/green]" if m == active else m)
        self.console.print(table)

    def format_history(self, messages: list[ChatMessage]) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        for msg in messages:
            ts = msg.timestamp.strftime("%H:%M:%S") if isinstance(msg.timestamp, datetime) else str(msg.timestamp)
            role = "function" if msg.synthetic else msg.role
            color = ROLE_COLORS.get(msg.role, "white")
            content = escape(msg.content.replace("\n", " ")[:100])
            if msg.function_calls:
                calls = ", ".join(r.name for r in msg.function_calls)
                content = f"{content} [calls: {calls}]".strip()
            self.console.print(f"  [{color}]{ts} {role:>10s}[/{color}]  {content}")

    def format_config(self, config: dict) -> None:
        json_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(json_str, "json", theme="monokai"))

    def export_history(self, messages: list[ChatMessage], fmt: str = "markdown") -> str:
        if fmt == "json":
            return json.dumps([m.to_dict() for m in messages], indent=2, default=str)
        if fmt != "markdown":
            raise ValueError(f"Unknown export format: {fmt}")

        lines: list[str] = ["# Chat Transcript\n"]
        for msg in messages:
            ts = msg.timestamp.isoformat() if isinstance(msg.timestamp, datetime) else str(msg.timestamp)
            if msg.synthetic:
                lines.append(f"**{ts}** - `function result`\n")
                lines.append(f"> {msg.content}\n")
            elif msg.role == ChatRole.USER:
                lines.append(f"**{ts}** - `user`\n")
                lines.append(f"> {msg.content}\n")
            elif msg.role == ChatRole.ERROR:
                lines.append(f"**{ts}** - `error`\n")
                lines.append(f"*{msg.content}*\n")
            else:
                lines.append(f"**{ts}** - `{msg.role}`\n")
                if msg.reasoning:
                    lines.append("<details><summary>Reasoning</summary>\n")
                    lines.append(f"{msg.reasoning}\n")
                    lines.append("</details>\n")
                if msg.content:
                    lines.append(f"{msg.content}\n")
                for record in msg.function_calls:
                    lines.append(f"```json\n{json.dumps(record.to_dict(), indent=2, default=str)}\n```\n")

        return "\n".join(lines)
