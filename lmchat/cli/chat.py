"""Terminal front end for one chat session."""

from __future__ import annotations

import asyncio

from rich.console import Console

from lmchat.cli.output import OutputFormatter
from lmchat.client.reducer import ClientReducer
from lmchat.errors import LMChatError
from lmchat.llm.types import CHANNEL_REASONING
from lmchat.orchestrator.core import ChatEngine
from lmchat.session.events import ChunkEvent, CompleteEvent, ErrorEvent, FunctionCallEvent

HELP = """\
  [bold]Commands[/bold]
  /history [markdown|json]  show the conversation, or export it
  /functions                list callable functions
  /clear                    forget the conversation
  /switch [provider]        show or change the model server
  /help                     this text
  /quit                     leave
"""


class ChatHandler:
    """
    Reads lines from the terminal and renders rounds as their events arrive.

    Every event goes through a :class:`ClientReducer` first, so stale events
    from an abandoned round are dropped before anything is printed.
    Reasoning is shown dimmed, function calls as panels.
    """

    def __init__(
        self,
        engine: ChatEngine,
        session_id: str = "cli",
        console: Console | None = None,
        enable_tools: bool = True,
    ) -> None:
        self.engine = engine
        self.session_id = session_id
        self.enable_tools = enable_tools
        self.console = console if console is not None else Console()
        self.formatter = OutputFormatter(self.console)
        self.reducer = ClientReducer()
        self._running = True
        self._commands = {
            "/quit": self._cmd_quit,
            "/exit": self._cmd_quit,
            "/history": self._cmd_history,
            "/functions": self._cmd_functions,
            "/clear": self._cmd_clear,
            "/switch": self._cmd_switch,
            "/help": self._cmd_help,
        }
        engine.get_or_create_session(session_id)

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    async def handle_command(self, line: str) -> bool:
        """Run a slash command.  ``False`` means *line* is not a known command."""
        name, _, arg = line.strip().partition(" ")
        command = self._commands.get(name.lower())
        if command is None:
            return False
        await command(arg.strip())
        return True

    async def _cmd_quit(self, arg: str) -> None:
        self._running = False
        self.console.print("[dim]Bye.[/dim]")

    async def _cmd_history(self, arg: str) -> None:
        history = self.engine.get_history(self.session_id)
        if not arg:
            self.formatter.format_history(history)
            return
        try:
            exported = self.formatter.export_history(history, arg)
        except ValueError as e:
            self.formatter.format_error(str(e))
        else:
            self.console.print(exported, markup=False)

    async def _cmd_functions(self, arg: str) -> None:
        self.formatter.format_function_list(self.engine.registry.list())

    async def _cmd_clear(self, arg: str) -> None:
        prompt = self.engine.manager.get(self.session_id).system_prompt
        await self.engine.teardown(self.session_id)
        self.engine.get_or_create_session(self.session_id, prompt)
        self.reducer.clear()
        self.console.print("  [dim]History cleared.[/dim]")

    async def _cmd_switch(self, arg: str) -> None:
        router = self.engine.router
        if not arg:
            names = ", ".join(router.provider_names)
            self.console.print(f"  Providers: {names} (active: {router.active_name})")
            return
        try:
            router.set_active(arg)
        except KeyError as e:
            self.formatter.format_error(str(e))
        else:
            self.console.print(f"  Now using [bold]{arg}[/bold]")

    async def _cmd_help(self, arg: str) -> None:
        self.console.print(HELP)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def handle_input(self, text: str) -> None:
        """Start a round for *text* and print it as it streams."""
        try:
            channel = self.engine.send(self.session_id, text, enable_tools=self.enable_tools)
        except LMChatError as e:
            self.formatter.format_error(e.message)
            return

        self.reducer.add_user_message(text)
        self.reducer.begin(channel.round_id)
        thinking = False
        try:
            async for event in channel:
                if not self.reducer.apply(event):
                    continue
                if isinstance(event, ChunkEvent):
                    is_reasoning = event.channel == CHANNEL_REASONING
                    if thinking and not is_reasoning:
                        self.console.print()
                    thinking = is_reasoning
                    style = "dim italic" if is_reasoning else None
                    self.console.print(event.text, end="", style=style, markup=False)
                elif isinstance(event, FunctionCallEvent):
                    self.console.print()
                    self.formatter.format_function_call(event.record)
                elif isinstance(event, ErrorEvent):
                    self.console.print()
                    self.formatter.format_error(event.message)
                elif isinstance(event, CompleteEvent):
                    self.console.print()
        except asyncio.CancelledError:
            self.engine.cancel(self.session_id)
            self.reducer.cancel()
            self.console.print("\n[dim]Cancelled.[/dim]")
            raise

    async def run_loop(self) -> None:
        self.console.print(
            "[bold]lmchat[/bold] - chat with a local model\n"
            "[dim]/help lists commands, /quit leaves.[/dim]\n"
        )
        loop = asyncio.get_running_loop()
        while self._running:
            try:
                line = await loop.run_in_executor(None, input, "you> ")
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Bye.[/dim]")
                return
            line = line.strip()
            if not line:
                continue
            if line.startswith("/") and await self.handle_command(line):
                continue
            self.console.print("[dim]assistant>[/dim] ", end="")
            await self.handle_input(line)
