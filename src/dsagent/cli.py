"""
DSAgent CLI - terminal client for the DSAgent agent service.

The server does all the reasoning and code execution; the CLI streams
its events, renders them and answers human-in-the-loop requests.

Usage:
    dsagent config --server-url http://localhost:8000 --api-key KEY
    dsagent chat                          # New session, interactive
    dsagent chat --session abc123         # Resume a session
    dsagent chat --hitl-mode plan_only    # Review plans before they run
    dsagent sessions                      # List sessions
    dsagent watch abc123                  # Follow pushed events
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Dict, Optional, Set

import click
from rich.logging import RichHandler

from dsagent import __version__
from dsagent.client import DSAgentAPIClient
from dsagent.core.config import get_config_path, load_config, read_config_file, save_config
from dsagent.errors import DSAgentError, HITLProtocolError
from dsagent.hitl import HITLRequest, HITLState
from dsagent.session import AgentSession, SendStatus
from dsagent.state.models import HITLMode
from dsagent.ui import DSAgentConsole
from dsagent.ws import AgentPushClient, ReconnectPolicy

logger = logging.getLogger(__name__)

HITL_MODES = [mode.value for mode in HITLMode]


def setup_logging(verbose: bool) -> None:
    """Route log records through rich; DEBUG with --verbose, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
    )


def _api_client(config: Dict[str, Any]) -> DSAgentAPIClient:
    return DSAgentAPIClient(config.get("server_url"), api_key=config.get("api_key"))


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="DSAgent")
@click.pass_context
def cli(ctx):
    """
    DSAgent - conversational data science agent.

    Quick start:
        dsagent config --server-url http://localhost:8000
        dsagent chat
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@cli.command()
@click.option("--server-url", "-u", help="Set the DSAgent server URL")
@click.option("--api-key", "-k", help="Set the API key")
@click.option("--model", "-m", help="Set the default model")
@click.option("--hitl-mode", type=click.Choice(HITL_MODES), help="Set the default HITL mode")
@click.option("--project", is_flag=True, help="Write to ./.dsagent/project.json instead of the global config")
@click.option("--show", is_flag=True, help="Show current configuration")
def config(
    server_url: Optional[str],
    api_key: Optional[str],
    model: Optional[str],
    hitl_mode: Optional[str],
    project: bool,
    show: bool,
):
    """
    Configure DSAgent settings.

    Set the server and key:
        dsagent config --server-url https://agent.example.com --api-key KEY

    View current config:
        dsagent config --show
    """
    ui = DSAgentConsole()
    current = load_config()

    if show:
        ui.console.print(f"\n[bold]DSAgent Configuration[/] ({get_config_path()})")
        ui.console.print("─" * 50)
        key_status = "[green]✓ configured[/]" if current.get("api_key") else "[red]✗ not set[/]"
        ui.console.print(f"Server URL:    {current.get('server_url')}")
        ui.console.print(f"API key:       {key_status}")
        ui.console.print(f"Model:         {current.get('model')}")
        ui.console.print(f"HITL mode:     {current.get('hitl_mode')}")
        reconnect = current.get("reconnect") or {}
        ui.console.print(
            f"Reconnect:     {reconnect.get('max_attempts')} attempts, "
            f"{reconnect.get('base_delay')}s..{reconnect.get('max_delay')}s"
        )
        ui.console.print()
        return

    updates = {
        key: value
        for key, value in (
            ("server_url", server_url),
            ("api_key", api_key),
            ("model", model),
            ("hitl_mode", hitl_mode),
        )
        if value
    }
    if not updates:
        ui.print_info("No configuration changes made. Use --help to see options.")
        return

    save_config({**read_config_file(project), **updates}, project_level=project)
    for key in updates:
        shown = "***" if key == "api_key" else updates[key]
        ui.print_success(f"{key} set to: {shown}")


@cli.command()
def status():
    """Check that the DSAgent server is reachable."""
    ui = DSAgentConsole()
    config = load_config()

    async def check() -> bool:
        async with _api_client(config) as api:
            return await api.health()

    ui.console.print(f"\n[bold cyan]DSAgent[/] v{__version__}")
    ui.console.print(f"[dim]Server:[/] {config.get('server_url')}")
    with ui.console.status("Testing connection..."):
        healthy = asyncio.run(check())

    if healthy:
        ui.print_success("Server connected")
    else:
        ui.print_error("Cannot reach server", recoverable=False)
        sys.exit(1)


@cli.command()
@click.option("--delete", "delete_id", help="Delete the session with this ID")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def sessions(delete_id: Optional[str], verbose: bool):
    """List sessions, or delete one."""
    setup_logging(verbose)
    ui = DSAgentConsole(verbose=verbose)
    config = load_config()

    async def run() -> None:
        async with _api_client(config) as api:
            if delete_id:
                await api.delete_session(delete_id)
                ui.print_success(f"Deleted session {delete_id}")
                return
            ui.print_sessions(await api.list_sessions())

    try:
        asyncio.run(run())
    except DSAgentError as e:
        ui.print_error(str(e), recoverable=False)
        sys.exit(1)


@cli.command()
@click.option("--session", "-s", "session_id", help="Resume an existing session")
@click.option("--name", "-n", help="Name for a new session")
@click.option("--model", "-m", help="Model for a new session")
@click.option("--hitl-mode", type=click.Choice(HITL_MODES), help="When the agent must ask for approval")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def chat(
    session_id: Optional[str],
    name: Optional[str],
    model: Optional[str],
    hitl_mode: Optional[str],
    verbose: bool,
):
    """
    Chat with the agent.

    Examples:
        dsagent chat                              # New session
        dsagent chat --session abc123             # Resume
        dsagent chat --hitl-mode full -m gpt-4o   # Approve every step
    """
    setup_logging(verbose)
    ui = DSAgentConsole(verbose=verbose)
    config = load_config()

    try:
        asyncio.run(_chat(
            ui,
            config,
            session_id=session_id,
            name=name,
            model=model or config.get("model"),
            hitl_mode=hitl_mode or config.get("hitl_mode"),
        ))
    except KeyboardInterrupt:
        ui.console.print("\n[yellow]Interrupted[/]")
        sys.exit(130)
    except DSAgentError as e:
        ui.print_error(str(e), recoverable=False)
        sys.exit(1)


async def _chat(
    ui: DSAgentConsole,
    config: Dict[str, Any],
    session_id: Optional[str],
    name: Optional[str],
    model: Optional[str],
    hitl_mode: Optional[str],
) -> None:
    async with _api_client(config) as api:
        agent = AgentSession(api, observer=ui.on_event)
        decisions: Set[asyncio.Task] = set()
        prompt_lock = asyncio.Lock()

        async def decide(request: HITLRequest) -> None:
            # One prompt at a time; a superseded request is simply not asked
            async with prompt_lock:
                while agent.hitl.pending is request:
                    decision = await asyncio.to_thread(ui.ask_hitl, request)
                    if agent.hitl.pending is not request:
                        ui.print_warning("The agent replaced that request; asking again")
                        return
                    try:
                        await agent.respond(**decision)
                    except HITLProtocolError as e:
                        ui.print_warning(str(e))
                    except DSAgentError as e:
                        ui.print_error(f"Could not send decision: {e}")
                        return

        def on_hitl(state: HITLState, request: Optional[HITLRequest]) -> None:
            if state == HITLState.AWAITING_DECISION and request is not None:
                task = asyncio.create_task(decide(request))
                decisions.add(task)
                task.add_done_callback(decisions.discard)

        agent.hitl.listener = on_hitl

        if session_id:
            session = await agent.resume(session_id)
        else:
            session = await agent.create(name=name, model=model, hitl_mode=hitl_mode or HITLMode.NONE)

        ui.print_banner(__version__, api.base_url, session)
        if agent.conversation.turns:
            ui.print_history(agent.conversation.turns)
        ui.console.print("[dim]Type your message, or /help for commands[/dim]\n")

        while True:
            user_input = (await ui.prompt_input_async()).strip()
            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "/exit", "/quit", "/q"):
                break

            if user_input.startswith("/"):
                await _slash_command(user_input, agent, ui)
                continue

            result = await agent.send_message(user_input)
            if decisions:
                await asyncio.gather(*decisions)

            if result.status == SendStatus.CANCELLED:
                ui.print_info("Cancelled")
            elif result.status == SendStatus.FAILED and ui.verbose:
                ui.print_info("You can resend the message to try again")

        await agent.disconnect()
        ui.print_goodbye()


async def _slash_command(command: str, agent: AgentSession, ui: DSAgentConsole) -> None:
    """Handle slash commands inside chat."""
    name, _, arg = command.partition(" ")
    name, arg = name.lower(), arg.strip()

    if name in ("/help", "/h", "/?"):
        ui.print_help()
    elif name == "/plan":
        ui.print_plan(agent.conversation.plan)
    elif name == "/history":
        ui.print_history(agent.conversation.turns)
    elif name in ("/session", "/info"):
        ui.print_session_info(agent.session, len(agent.conversation.turns))
    elif name == "/clear":
        ui.console.clear()
    elif name == "/hitl":
        if arg not in HITL_MODES:
            ui.print_warning(f"HITL mode must be one of: {', '.join(HITL_MODES)}")
            return
        try:
            await agent.update(hitl_mode=arg)
        except DSAgentError as e:
            ui.print_error(str(e))
            return
        ui.print_success(f"HITL mode set to {arg} (applies from the next round)")
    elif name == "/model":
        if not arg:
            ui.print_warning("Usage: /model NAME")
            return
        try:
            await agent.update(model=arg)
        except DSAgentError as e:
            ui.print_error(str(e))
            return
        ui.print_success(f"Model set to {arg}")
    else:
        ui.print_warning(f"Unknown command: {name}. Type /help for commands.")


@cli.command()
@click.argument("session_id")
@click.option("--url", help="Push channel URL (default: <server>/api/sessions/<id>/ws)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def watch(session_id: str, url: Optional[str], verbose: bool):
    """
    Follow events pushed for a session over a WebSocket.

    The connection is re-established automatically if it drops.
    Press Ctrl+C to stop.
    """
    setup_logging(verbose)
    ui = DSAgentConsole(verbose=verbose)
    config = load_config()

    async def run() -> bool:
        async with _api_client(config) as api:
            agent = AgentSession(api, observer=ui.on_event)
            await agent.resume(session_id)

            push = AgentPushClient(
                url or f"{api.base_url}/api/sessions/{session_id}/ws",
                api_key=config.get("api_key"),
                policy=ReconnectPolicy.from_config(config),
                on_status=ui.on_connection_status,
            )
            result = await agent.follow(push)
            return result.ok

    ok = True
    try:
        ok = asyncio.run(run())
    except KeyboardInterrupt:
        ui.console.print("\n[yellow]Stopped[/]")
    except DSAgentError as e:
        ui.print_error(str(e), recoverable=False)
        sys.exit(1)

    if not ok:
        sys.exit(1)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
