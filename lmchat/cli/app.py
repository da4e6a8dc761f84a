"""
Main CLI application for lmchat.

Usage:
    lmchat chat [--provider NAME] [--profile NAME] [--session ID] [--no-tools]
    lmchat functions list|prompt
    lmchat models
    lmchat config show|validate
    lmchat version
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from lmchat.config import LLMProviderConfig, LMChatConfig, load_config
from lmchat.errors import TransportError

app = typer.Typer(name="lmchat", help="lmchat - chat with a local model, with function calling")
functions_app = typer.Typer(help="Function catalog")
config_app = typer.Typer(help="Configuration management")

app.add_typer(functions_app, name="functions")
app.add_typer(config_app, name="config")

console = Console()

__version__ = "0.1.0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "lmchat.yaml",
        Path.cwd() / "lmchat.yml",
        Path.home() / ".config" / "lmchat" / "config.yaml",
        Path.home() / ".lmchat" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(cfg: LMChatConfig) -> None:
    level = getattr(logging, cfg.logging.level.upper(), logging.WARNING)
    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    ]
    if cfg.logging.file:
        file_handler = logging.FileHandler(Path(cfg.logging.file).expanduser(), encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)


def _build_registry(cfg: LMChatConfig):
    from lmchat.functions.builtin import register_builtins
    from lmchat.functions.registry import FunctionRegistry

    registry = FunctionRegistry()
    if not cfg.tools.enabled:
        return registry

    register_builtins(registry, cfg.tools.builtin)
    registry.load_plugins(
        enabled=cfg.plugins.enabled,
        allow_distributions=set(cfg.plugins.allow_distributions) or None,
        allow_functions=set(cfg.plugins.allow_functions) or None,
    )
    for name in cfg.tools.disabled:
        registry.unregister(name)
    return registry


def _build_router(cfg: LMChatConfig):
    from lmchat.llm.providers.ollama import OllamaProvider
    from lmchat.llm.providers.openai_compat import OpenAICompatProvider
    from lmchat.llm.router import LLMRouter
    from lmchat.llm.token_counter import TokenCounter

    counter = TokenCounter(cfg.llm.tokenizer or None)
    llm = cfg.llm
    if llm.name == "ollama":
        url = llm.url
        if url == LLMProviderConfig.url:
            url = "http://localhost:11434"
        provider = OllamaProvider(
            url=url,
            model=llm.model or "llama3",
            temperature=llm.temperature,
            timeout=float(llm.timeout_seconds),
            max_context=llm.max_context_tokens,
            max_output=llm.max_output_tokens,
            token_counter=counter,
        )
    else:
        provider = OpenAICompatProvider(
            url=llm.url,
            model=llm.model,
            api_key=os.environ.get(llm.api_key_env, ""),
            temperature=llm.temperature,
            timeout=float(llm.timeout_seconds),
            max_retries=llm.max_retries,
            max_context=llm.max_context_tokens,
            max_output=llm.max_output_tokens,
            token_counter=counter,
        )

    router = LLMRouter()
    router.register_provider(llm.name, provider)
    return router, counter


def _build_engine(cfg: LMChatConfig):
    from lmchat.orchestrator.core import ChatEngine

    router, counter = _build_router(cfg)
    return ChatEngine(
        router=router,
        registry=_build_registry(cfg),
        system_prompt=cfg.session.system_prompt,
        token_counter=counter,
        tool_timeout=cfg.tools.timeout_seconds,
        max_passes=cfg.tools.max_passes,
        reserve_tokens=cfg.session.reserve_tokens,
    )


def _load(profile: str | None = None, cli_overrides: dict | None = None) -> LMChatConfig:
    try:
        cfg = load_config(_get_config_path(), profile=profile, cli_overrides=cli_overrides)
    except (ValueError, KeyError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)
    _setup_logging(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    provider: Optional[str] = typer.Option(None, help="Provider to use: lmstudio or ollama"),
    model: Optional[str] = typer.Option(None, help="Model identifier"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    session: str = typer.Option("cli", "--session", help="Session ID"),
    no_tools: bool = typer.Option(False, "--no-tools", help="Disable function calling"),
):
    """Start an interactive chat session."""
    from lmchat.cli.chat import ChatHandler

    overrides: dict = {}
    if provider:
        overrides["llm.name"] = provider
    if model:
        overrides["llm.model"] = model
    cfg = _load(profile, overrides)

    async def _run():
        engine = _build_engine(cfg)
        handler = ChatHandler(
            engine,
            session_id=session,
            console=console,
            enable_tools=cfg.tools.enabled and not no_tools,
        )
        try:
            await handler.run_loop()
        finally:
            await engine.shutdown()

    asyncio.run(_run())


@functions_app.command("list")
def functions_list():
    """List registered functions."""
    from lmchat.cli.output import OutputFormatter

    cfg = _load()
    OutputFormatter(console).format_function_list(_build_registry(cfg).list())


@functions_app.command("prompt")
def functions_prompt():
    """Show the composed system prompt sent to the model."""
    from lmchat.cli.output import OutputFormatter
    from lmchat.prompts.composer import compose

    cfg = _load()
    prompt = compose(cfg.session.system_prompt, _build_registry(cfg))
    OutputFormatter(console).format_prompt(prompt)


@app.command()
def models(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """List models loaded on the configured server (validates the connection)."""
    from lmchat.cli.output import OutputFormatter

    cfg = _load(profile)
    router, _counter = _build_router(cfg)
    try:
        names = asyncio.run(router.list_models())
    except TransportError as e:
        console.print(f"[red]Connection failed:[/red] {e.message}")
        raise typer.Exit(1)
    OutputFormatter(console).format_models(names, active=cfg.llm.model or None)
    if not names:
        raise typer.Exit(1)


@config_app.command("show")
def config_show():
    """Show effective config."""
    from lmchat.cli.output import OutputFormatter

    cfg = _load()
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Check the effective config and report anything that would stop a chat."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
    except (ValueError, KeyError, yaml.YAMLError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    issues = cfg.problems()
    if issues:
        console.print("[red]Config validation failed:[/red]")
        for issue in issues:
            console.print(f"  - {issue}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  LLM provider: {cfg.llm.name} ({cfg.llm.model or 'server default'})")
    console.print(f"  Functions enabled: {cfg.tools.enabled}")
    console.print(f"  Plugins enabled: {cfg.plugins.enabled}")
    console.print(f"  Max passes per round: {cfg.tools.max_passes}")


@app.command()
def version():
    """Show version."""
    console.print(f"lmchat v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
