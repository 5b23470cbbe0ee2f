"""CLI entry point for voxstream."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import typer

from voxstream.config import VoxStreamConfig
from voxstream.session.cache import valid_file_ids
from voxstream.stream.channels import extract

if TYPE_CHECKING:
    from voxstream.session.cache import ToggledFilesCache
    from voxstream.session.controller import SessionController
    from voxstream.session.wire import Wire, WireEvent

app = typer.Typer(
    name="voxstream",
    help="Stream answers, reasoning and agent events from the Vox agent service.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(
    config_file: str | None, model: str | None, user: str | None
) -> VoxStreamConfig:
    config = VoxStreamConfig.load(config_file)
    if model:
        config.service.model_name = model
    if user:
        config.session.user_id = user
    return config


class _LivePrinter:
    """Prints the growing answer of a composed stream without repeating text."""

    def __init__(self, show_reasoning: bool = False) -> None:
        self.show_reasoning = show_reasoning
        self.last_composed = ""
        self._printed = ""
        self.done = asyncio.Event()
        self.done.set()

    def update(self, composed: str) -> None:
        self.last_composed = composed
        answer = extract(composed).clean_text
        if answer.startswith(self._printed):
            print(answer[len(self._printed) :], end="", flush=True)
        else:
            # Earlier text changed (e.g. a speaker label got stripped).
            print("\r" + answer, end="", flush=True)
        self._printed = answer

    def finish(self, composed: str) -> None:
        extracted = extract(composed)
        print(flush=True)
        if self.show_reasoning and extracted.reasoning:
            print(f"\n[reasoning]\n{extracted.reasoning}", flush=True)
        for event in extracted.events or []:
            detail = event.message or event.tool or event.decision or ""
            print(f"  [event] {event.event_type} {detail}".rstrip(), flush=True)
        self._printed = ""
        self.last_composed = ""


@app.command()
def ask(
    query: str = typer.Argument(help="Question to send to the agent service."),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Model name, or 'normal' / 'reasoning'."
    ),
    user: str | None = typer.Option(None, "--user", "-u", help="User id."),
    reasoning: bool = typer.Option(
        False, "--reasoning", "-r", help="Print the reasoning channel after the answer."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Send one query and print the streamed answer."""
    setup_logging(verbose)
    config = _load_config(config_file, model, user)

    from voxstream.exceptions import StreamError

    try:
        asyncio.run(_run_ask(query, config, reasoning))
    except StreamError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


async def _run_ask(query: str, config: VoxStreamConfig, show_reasoning: bool) -> None:
    from voxstream.stream.transport import AgentStreamClient, build_request

    service = config.service
    request = build_request(
        query=query,
        model_name=service.resolved_model(),
        top_k=service.top_k,
        user_id=config.session.user_id,
        space_id=config.session.space_id,
    )
    printer = _LivePrinter(show_reasoning)
    async with AgentStreamClient(
        service.api_url, timeout=service.timeout, max_retries=service.max_retries
    ) as client:
        final = await client.stream(request, on_chunk=printer.update)
    printer.finish(final)


@app.command()
def sessions(
    user: str | None = typer.Option(None, "--user", "-u", help="User id."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """List stored chat sessions, newest first."""
    config = _load_config(config_file, None, user)
    if not config.session.user_id:
        typer.echo("Error: no user id (use --user or VOXSTREAM_USER_ID)", err=True)
        raise typer.Exit(1)

    from voxstream.session.store import JsonlSessionStore

    store = JsonlSessionStore(config.session.session_dir)
    found = asyncio.run(
        store.list_sessions(config.session.user_id, config.session.space_id)
    )
    if not found:
        typer.echo("No sessions.")
    for s in found:
        typer.echo(f"{s.id}  {s.created_at[:19]}  {s.title}")


@app.command()
def chat(
    session_id: str | None = typer.Option(
        None, "--session", "-s", help="Resume an existing session."
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Model name, or 'normal' / 'reasoning'."
    ),
    user: str | None = typer.Option(None, "--user", "-u", help="User id."),
    reasoning: bool = typer.Option(
        False, "--reasoning", "-r", help="Print reasoning after each answer."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Interactive chat.

    Type /new for a fresh session, /file <id> to toggle a file into the
    query context, /files to list toggled files and /quit to leave.
    """
    setup_logging(verbose)
    config = _load_config(config_file, model, user)
    if not config.session.user_id:
        typer.echo("Error: no user id (use --user or VOXSTREAM_USER_ID)", err=True)
        raise typer.Exit(1)

    typer.echo(f"Model: {config.service.resolved_model()}")
    typer.echo(f"Store: {config.session.session_dir}")
    typer.echo("---")
    asyncio.run(_run_chat(config, session_id, reasoning))


async def _run_chat(
    config: VoxStreamConfig, session_id: str | None, show_reasoning: bool
) -> None:
    from voxstream.exceptions import SessionCreateError
    from voxstream.session.cache import ToggledFilesCache
    from voxstream.session.controller import SessionController
    from voxstream.session.store import JsonlSessionStore
    from voxstream.session.wire import EventType, Wire
    from voxstream.stream.transport import AgentStreamClient

    wire = Wire()
    printer = _LivePrinter(show_reasoning)
    toggled = ToggledFilesCache()
    service = config.service

    async with AgentStreamClient(
        service.api_url, timeout=service.timeout, max_retries=service.max_retries
    ) as client:
        controller = SessionController(
            store=JsonlSessionStore(config.session.session_dir),
            client=client,
            config=config,
            wire=wire,
            toggled_files=toggled,
        )
        # Subscribe before anything can be published.
        queue = wire.subscribe(
            {
                EventType.CHUNK,
                EventType.STREAM_END,
                EventType.STATUS,
                EventType.ERROR,
                EventType.SESSION_ACTIVE,
            }
        )
        consumer_task = asyncio.create_task(_consume_wire(wire, queue, printer))

        await controller.refresh_sessions()
        if session_id:
            await _resume(controller, session_id)

        pending_text = ""
        while True:
            prompt = "> " if not pending_text else f"> (restored) {pending_text}\n> "
            try:
                line = await asyncio.to_thread(input, prompt)
            except EOFError:
                break
            text = line.strip() or pending_text
            pending_text = ""
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/new":
                controller.leave_session()
                typer.echo("Started a new conversation.")
                continue
            if text.startswith("/file ") or text == "/files":
                user_id = config.session.user_id or ""
                _toggle_command(controller, toggled, text, user_id)
                continue

            printer.done.clear()
            try:
                await controller.send_message(text)
            except SessionCreateError as e:
                typer.echo(f"Error: {e}", err=True)
                pending_text = e.unsent_text
                continue
            # The wire consumer prints the tail of the reply.
            await printer.done.wait()

        await controller.aclose()
        wire.close()
        await consumer_task


def _toggle_command(
    controller: SessionController,
    toggled: ToggledFilesCache,
    text: str,
    user_id: str,
) -> None:
    if text == "/files":
        files = toggled.get(user_id)
        typer.echo("\n".join(files) if files else "No files toggled.")
        return
    file_id = text.removeprefix("/file ").strip()
    if not valid_file_ids([file_id]):
        typer.echo(f"Not a file id: {file_id}", err=True)
        return
    state = "on" if controller.toggle_file(file_id) else "off"
    typer.echo(f"File {state}: {file_id}")


async def _resume(controller: SessionController, session_id: str) -> None:
    match = next((s for s in controller.sessions if s.id == session_id), None)
    if match is None:
        typer.echo(f"Unknown session: {session_id}", err=True)
        return
    await controller.select_session(match)
    for message in controller.messages:
        speaker = "you" if message.is_user else "vox"
        typer.echo(f"[{speaker}] {message.content}")


async def _consume_wire(
    wire: Wire, queue: asyncio.Queue[WireEvent | None], printer: _LivePrinter
) -> None:
    from voxstream.session.wire import EventType

    while True:
        event = await queue.get()
        if event is None:
            break

        d = event.data
        if event.type == EventType.CHUNK:
            printer.update(d.get("composed", ""))
        elif event.type == EventType.STREAM_END:
            printer.finish(printer.last_composed)
            printer.done.set()
        elif event.type == EventType.STATUS:
            print(f"[{d.get('message', '')}]", flush=True)
        elif event.type == EventType.ERROR:
            print(f"\nERROR: {d.get('error', 'Unknown error')}", flush=True)
        elif event.type == EventType.SESSION_ACTIVE and d.get("session_id"):
            logging.getLogger(__name__).info("Active session: %s", d["session_id"])

    wire.unsubscribe(queue)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
