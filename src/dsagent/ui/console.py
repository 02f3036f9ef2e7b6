"""Rich console UI for the DSAgent CLI."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from dsagent.hitl.coordinator import HITLAction, HITLKind, HITLRequest
from dsagent.state.models import ExecutionResult, PlanState, Session, Turn
from dsagent.stream.events import DomainEvent, ErrorSource, EventKind
from dsagent.ws.client import ConnectionStatus

# Decisions offered per request kind
ACTION_CHOICES: Dict[HITLKind, List[HITLAction]] = {
    HITLKind.PLAN: [HITLAction.APPROVE, HITLAction.MODIFY, HITLAction.REJECT, HITLAction.FEEDBACK],
    HITLKind.CODE: [HITLAction.APPROVE, HITLAction.MODIFY, HITLAction.SKIP, HITLAction.REJECT, HITLAction.FEEDBACK],
    HITLKind.ANSWER: [HITLAction.APPROVE, HITLAction.REJECT, HITLAction.FEEDBACK],
    HITLKind.ERROR: [HITLAction.RETRY, HITLAction.SKIP, HITLAction.REJECT, HITLAction.FEEDBACK],
}

MAX_OUTPUT_CHARS = 2000


class DSAgentConsole:
    """Rich console for the DSAgent CLI."""

    def __init__(self, verbose: bool = False, console: Optional[Console] = None):
        self.console = console or Console()
        self.verbose = verbose
        self._status: Optional[Status] = None

    def print_banner(self, version: str, server_url: str, session: Optional[Session] = None):
        """Print the startup banner with connection info."""
        self.console.print("[bold cyan]DSAgent[/] [dim]data science agent[/]")

        info_text = f"[dim]v{version}[/] │ [bold]{server_url}[/]"
        if session:
            info_text += f" │ [yellow]{session.name or session.id}[/] [dim]({session.hitl_mode.value})[/]"
        self.console.print(Panel(info_text, style="blue", padding=(0, 1)))

    def print_help(self):
        """Print available commands."""
        help_text = """
[bold]Commands:[/]
  [cyan]/help[/]         Show this help message
  [cyan]/plan[/]         Show the current plan
  [cyan]/history[/]      Show the turn history
  [cyan]/session[/]      Show session information
  [cyan]/hitl MODE[/]    Change HITL mode (none, plan_only, full, plan_and_answer, on_error)
  [cyan]/model NAME[/]   Change the model
  [cyan]/clear[/]        Clear the screen
  [cyan]/exit[/]         Exit DSAgent

[bold]Tips:[/]
  • Ask naturally: "load sales.csv and plot revenue by month"
  • Use [cyan]--hitl-mode plan_only[/] to review plans before they run
"""
        self.console.print(Panel(help_text, title="[bold]DSAgent Help[/]", border_style="blue"))

    # ==========================================
    # STREAM EVENTS
    # ==========================================

    def on_event(self, event: DomainEvent) -> None:
        """Render one domain event. Used as the session observer."""
        kind = event.kind

        if kind == EventKind.THINKING:
            self._show_thinking(event.text)
            return

        self._stop_thinking()

        if kind == EventKind.ASSISTANT_TEXT:
            if event.text:
                self.console.print(Markdown(event.text))
        elif kind == EventKind.PLAN_UPDATED:
            self.print_plan(event.plan)
        elif kind == EventKind.CODE_STARTED:
            self.print_code(event.code)
        elif kind == EventKind.CODE_FINISHED:
            self.print_result(event.result)
        elif kind == EventKind.ANSWER_READY:
            self.print_message(event.text, title="Answer")
        elif kind == EventKind.HITL_REQUESTED:
            self.console.print(f"[yellow]⏸ Agent is waiting for your decision ({event.request.kind.value})[/]")
        elif kind == EventKind.STREAM_ERROR:
            self.print_error(event.message, recoverable=event.source != ErrorSource.PROTOCOL)
        elif kind == EventKind.STREAM_COMPLETE and event.synthesized and self.verbose:
            self.console.print("[dim]Stream ended without a completion marker[/dim]")

    def _show_thinking(self, message: str) -> None:
        text = f"[bold cyan]{message or 'Thinking...'}[/]"
        if self._status is None:
            self._status = self.console.status(text, spinner="dots")
            self._status.start()
        else:
            self._status.update(text)

    def _stop_thinking(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def print_plan(self, plan: Optional[PlanState]):
        """Print the plan as a checklist with progress."""
        if plan is None:
            self.print_info("No plan yet")
            return

        if not plan.steps:
            body = plan.raw_text or "[dim]Empty plan[/dim]"
            self.console.print(Panel(body, title=f"[bold]Plan[/] {plan.progress_label}", border_style="magenta"))
            return

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(width=3)
        table.add_column(style="dim", justify="right")
        table.add_column()
        for step in plan.steps:
            mark = "[green]✓[/]" if step.completed else "[dim][ ][/dim]"
            table.add_row(mark, f"{step.number}.", step.description)

        title = f"[bold]Plan[/] {plan.progress_label} ({plan.progress:.0%})"
        self.console.print(Panel(table, title=title, border_style="magenta"))

    def print_code(self, code: str):
        """Print code sent for execution."""
        syntax = Syntax(code, "python", theme="monokai", line_numbers=True)
        self.console.print(Panel(syntax, title="[bold]Executing[/]", border_style="cyan"))

    def print_result(self, result: ExecutionResult):
        """Print the outcome of a code execution."""
        if result.stdout:
            output = result.stdout
            if len(output) > MAX_OUTPUT_CHARS:
                output = output[:MAX_OUTPUT_CHARS] + "\n..."
            self.console.print(Panel(Text(output), title="[bold]Output[/]", border_style="green" if result.success else "red"))

        if not result.success:
            self.print_error(result.error or "Execution failed")

        for image in result.images:
            self.console.print(f"[dim]🖼  {image.mime} image ({len(image.data):,} bytes)[/dim]")

    def print_message(self, message: str, title: str = "Response"):
        """Print an agent response in a panel with markdown."""
        md = Markdown(message or "")
        self.console.print(Panel(md, title=f"[bold green]{title}[/]", border_style="green"))

    def print_error(self, error: str, recoverable: bool = True):
        """Print an error message."""
        self._stop_thinking()
        style = "yellow" if recoverable else "red"
        icon = "⚠" if recoverable else "✗"
        self.console.print(f"[{style}]{icon} {error}[/{style}]")

    def print_success(self, message: str):
        self.console.print(f"[green]✓ {message}[/green]")

    def print_info(self, message: str):
        self.console.print(f"[blue]ℹ {message}[/blue]")

    def print_warning(self, message: str):
        self.console.print(f"[yellow]⚠ {message}[/yellow]")

    def on_connection_status(self, status: ConnectionStatus, details: Dict[str, Any]) -> None:
        """Render push channel status changes."""
        if status == ConnectionStatus.RECONNECTING:
            self.print_warning(f"Connection lost, reconnecting in {details.get('delay', 0):.0f}s (attempt {details.get('attempt')})")
        elif status == ConnectionStatus.RECONNECTED:
            self.print_success("Reconnected")
        elif status == ConnectionStatus.RECONNECT_FAILED:
            self.print_error(f"Could not reconnect after {details.get('attempts')} attempts", recoverable=False)
        elif self.verbose:
            self.print_info(f"Push channel {status.value}")

    # ==========================================
    # SESSIONS AND HISTORY
    # ==========================================

    def print_sessions(self, sessions: List[Session]):
        """Print sessions as a table."""
        if not sessions:
            self.print_info("No sessions")
            return

        table = Table(title="Sessions")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Model", style="dim")
        table.add_column("HITL", style="dim")
        table.add_column("Updated", style="dim")
        for s in sessions:
            table.add_row(s.id, s.name, s.status.value, s.model or "", s.hitl_mode.value, s.updated_at or "")
        self.console.print(table)

    def print_session_info(self, session: Optional[Session], turn_count: int):
        """Print session information."""
        table = Table(show_header=False, box=None)
        table.add_column(style="dim")
        table.add_column()
        if session is None:
            table.add_row("Session:", "[dim]None[/dim]")
        else:
            table.add_row("Session:", session.id)
            table.add_row("Name:", session.name)
            table.add_row("Model:", session.model or "[dim]default[/dim]")
            table.add_row("HITL:", session.hitl_mode.value)
        table.add_row("History:", f"{turn_count} turns")
        self.console.print(table)

    def print_history(self, turns: List[Turn]):
        """Print a compact replay of past turns."""
        if not turns:
            self.print_info("No history")
            return

        for turn in turns:
            if turn.user_message:
                self.console.print(f"[bold cyan]You[/] [dim]#{turn.round}[/dim] {turn.user_message}")
            for block in turn.code_blocks:
                self.console.print(Syntax(block.code, "python", theme="monokai"))
                if block.result is not None and not block.result.success:
                    self.console.print(f"[red]  ✗ {block.result.error or 'failed'}[/red]")
            text = turn.answer if turn.has_answer else turn.content
            if text:
                self.console.print(Markdown(text))
            self.console.print()

    # ==========================================
    # INPUT
    # ==========================================

    def prompt_input(self) -> str:
        """Get user input with styled prompt."""
        self._stop_thinking()
        try:
            return Prompt.ask("[bold cyan]You[/]", console=self.console)
        except (KeyboardInterrupt, EOFError):
            return ""

    async def prompt_input_async(self) -> str:
        """Get user input without blocking the event loop."""
        return await asyncio.to_thread(self.prompt_input)

    def confirm(self, message: str, default: bool = True) -> bool:
        """Ask for confirmation."""
        return Confirm.ask(message, console=self.console, default=default)

    def ask_hitl(self, request: HITLRequest) -> Dict[str, Any]:
        """
        Ask the user to decide on a HITL request.

        Returns:
            Keyword arguments for AgentSession.respond()
        """
        self._stop_thinking()
        self._print_request(request)

        choices = [a.value for a in ACTION_CHOICES[request.kind]]
        action = HITLAction(Prompt.ask(
            "[yellow]Decision[/]",
            choices=choices,
            default=choices[0],
            console=self.console,
        ))

        decision: Dict[str, Any] = {"action": action}
        if action == HITLAction.MODIFY:
            if request.kind == HITLKind.PLAN:
                decision["modified_plan"] = Prompt.ask("[yellow]Modified plan[/]", console=self.console)
            else:
                decision["modified_code"] = Prompt.ask("[yellow]Modified code[/]", console=self.console)
        elif action == HITLAction.FEEDBACK:
            decision["message"] = Prompt.ask("[yellow]Feedback[/]", console=self.console)
        elif action == HITLAction.REJECT:
            reason = Prompt.ask("[yellow]Reason[/] [dim](optional)[/]", default="", console=self.console)
            if reason:
                decision["message"] = reason
        return decision

    def _print_request(self, request: HITLRequest) -> None:
        if request.prompt:
            self.console.print(f"[bold yellow]{request.prompt}[/]")

        if request.kind == HITLKind.PLAN:
            self.print_plan(request.plan)
        elif request.kind == HITLKind.CODE and request.code:
            self.print_code(request.code)
        elif request.kind == HITLKind.ANSWER and request.answer:
            self.print_message(request.answer, title="Proposed answer")
        elif request.kind == HITLKind.ERROR:
            self.print_error(request.error or "The agent hit an error", recoverable=True)

    def print_goodbye(self):
        self.console.print("\n[bold cyan]👋 Goodbye![/bold cyan]\n")
