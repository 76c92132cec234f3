"""CLI - Command line interface for the monitoring assistant."""

import argparse
import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from .agents.events import EventType, StreamEvent
from .agents.orchestrator import MultiAgentOrchestrator, build_orchestrator
from .config import ConfigError, load_config
from .observability import LOGGER_NAME
from .providers.selection import check_provider_status
from .providers.types import Message

console = Console()


def print_banner(orchestrator: MultiAgentOrchestrator) -> None:
    available = orchestrator.registry.get_available_agents()
    lines = [
        "[bold cyan]Server Monitoring AI[/bold cyan]",
        f"Agents online: {', '.join(available) if available else 'none (set provider API keys)'}",
        "Commands: /help  /status  /handoffs  /reset  /quit",
    ]
    console.print(Panel("\n".join(lines), expand=False))


def print_help() -> None:
    help_text = """
## Commands

| Command | Description |
|---------|-------------|
| `/help` | Show this help message |
| `/status` | Show provider availability |
| `/handoffs` | Show recent agent handoffs |
| `/reset` | Start a new session |
| `/quit` or `/exit` | Exit |

## Example questions

- "서버 상태 알려줘"
- "CPU 이상 원인 분석해줘"
- "장애 보고서 만들어줘"
- "서버 상태와 원인 분석을 비교하고 해결 방법도 알려줘"
"""
    console.print(Markdown(help_text))


def render_event(event: StreamEvent, show_tools: bool) -> None:
    """Print one event as it arrives."""
    if event.type == EventType.TEXT_DELTA:
        console.print(event.data, end="", markup=False, highlight=False)
    elif event.type == EventType.HANDOFF:
        console.print(f"\n↪ {event.data['from']} → {event.data['to']}", style="dim")
    elif event.type == EventType.AGENT_STATUS:
        console.print(f"\n⚙ {event.data['agent']}: {event.data['status']}", style="yellow")
    elif event.type == EventType.TOOL_CALL and show_tools:
        console.print(f"\n🔧 {event.data['name']}({json.dumps(event.data['args'], ensure_ascii=False)})", style="dim")
    elif event.type == EventType.DONE:
        meta = event.data.get("metadata", {})
        console.print(
            f"\n\n✓ {event.data['finalAgent']} · {meta.get('provider')}/{meta.get('modelId')} · {meta.get('durationMs')}ms",
            style="green",
        )
    elif event.type == EventType.ERROR:
        console.print(f"\n❌ [{event.data['code']}] {event.data.get('message', '')}", style="red")


async def run_prompt(
    orchestrator: MultiAgentOrchestrator,
    messages: List[Message],
    session_id: str,
    as_json: bool = False,
    show_tools: bool = False,
) -> Optional[str]:
    """Run one turn and return the final response text (None on error)."""
    response: Optional[str] = None
    async for event in orchestrator.execute_stream(messages, session_id=session_id):
        if as_json:
            console.print_json(json.dumps(event.to_dict(), ensure_ascii=False))
        else:
            render_event(event, show_tools)
        if event.type == EventType.DONE:
            response = event.data.get("response")
    return response


async def run_interactive(orchestrator: MultiAgentOrchestrator, show_tools: bool) -> None:
    history_file = Path.home() / ".monitor_agent_history"
    session = PromptSession(history=FileHistory(str(history_file)))
    session_id = uuid.uuid4().hex
    messages: List[Message] = []

    print_banner(orchestrator)

    while True:
        try:
            user_input = (await session.prompt_async("\n💬 You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            console.print("\n👋 Goodbye!", style="yellow")
            break

        if not user_input:
            continue
        command = user_input.lower()
        if command in ("/quit", "/exit", "/q"):
            console.print("👋 Goodbye!", style="yellow")
            break
        if command == "/help":
            print_help()
            continue
        if command == "/status":
            status = check_provider_status()
            console.print(", ".join(f"{name}: {'up' if up else 'down'}" for name, up in status.items()))
            continue
        if command == "/handoffs":
            for entry in orchestrator.get_recent_handoffs():
                console.print(f"{entry['from']} → {entry['to']} ({entry.get('reason') or '-'})")
            continue
        if command == "/reset":
            session_id = uuid.uuid4().hex
            messages = []
            console.print("🔄 New session started.", style="green")
            continue
        if user_input.startswith("/"):
            console.print(f"Unknown command: {user_input}. Type /help for available commands.", style="red")
            continue

        messages.append(Message.user(user_input))
        try:
            response = await run_prompt(orchestrator, messages, session_id, show_tools=show_tools)
        except KeyboardInterrupt:
            console.print("\n⚠️ Interrupted.", style="yellow")
            continue
        if response:
            messages.append(Message.assistant(response))


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="monitor-agent - multi-agent server monitoring assistant")
    parser.add_argument("--prompt", "-p", help="Run a single query and exit (non-interactive mode)")
    parser.add_argument(
        "--config",
        "-c",
        default="config/config.local.yaml",
        help="Path to configuration file",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log agent steps and tool calls")
    parser.add_argument("--json", action="store_true", help="Print raw stream events as JSON")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger(LOGGER_NAME).setLevel(logging.INFO if args.verbose else logging.WARNING)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        console.print(f"⚠️ Invalid configuration: {e}", style="red")
        return 2

    orchestrator = build_orchestrator(config=config, verbose=args.verbose)

    if args.prompt:
        response = asyncio.run(
            run_prompt(
                orchestrator,
                [Message.user(args.prompt)],
                session_id=uuid.uuid4().hex,
                as_json=args.json,
                show_tools=args.verbose,
            )
        )
        return 0 if response is not None else 1

    asyncio.run(run_interactive(orchestrator, show_tools=args.verbose))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
