"""
Main CLI application entry point.

This module contains the Typer application and command handlers for
Hatz Chat.
"""

from typing import List, Optional, Dict, Any
import asyncio
import logging
import signal
import sys
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.markup import escape
from rich.table import Table

from hatz_chat import VERSION
from hatz_chat.config.credentials import ApiKeyStore
from hatz_chat.config.env_loader import EnvFileLoader
from hatz_chat.config.hierarchical import ENV_CONVERTERS, HierarchicalConfigLoader, SettingScope
from hatz_chat.config.settings import HatzChatSettings, load_settings
from hatz_chat.core.apps import AppForm, filter_apps
from hatz_chat.core.client import HatzError, create_user_friendly_message
from hatz_chat.core.session import HatzSession
from hatz_chat.utils.logging_setup import configure_logging
from .rendering import app_detail, apps_table, files_table, models_table, render_reply

logger = logging.getLogger(__name__)

# Create the main Typer application
app = typer.Typer(
    name="hatz-chat",
    help="Hatz Chat - chat with Hatz AI models and run Hatz Apps",
    add_completion=False,
    rich_markup_mode="rich",
)
files_app = typer.Typer(help="List and upload files", no_args_is_help=True)
apps_app = typer.Typer(help="List, inspect and run Hatz Apps", no_args_is_help=True)
key_app = typer.Typer(help="Manage the stored Hatz API key", no_args_is_help=True)
app.add_typer(files_app, name="files")
app.add_typer(apps_app, name="apps")
app.add_typer(key_app, name="key")

# Rich console for output
console = Console()

# Terminates a multi-line input when entered on its own line.
MULTILINE_END = "."


def version_callback(value: bool) -> None:
    """Display version information and exit."""
    if value:
        console.print(f"[bold blue]Hatz Chat[/bold blue] version [green]{VERSION}[/green]")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """
    Hatz Chat - a terminal client for the Hatz AI API.

    Chat with the available models, upload files and run Apps.
    """
    try:
        settings = load_settings(overrides={"log_level": log_level})
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    configure_logging(settings.log_level, settings.debug)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> HatzChatSettings:
    if isinstance(ctx.obj, HatzChatSettings):
        return ctx.obj
    return load_settings()


def _fail(error: HatzError) -> None:
    console.print(f"[red]Error:[/red] {create_user_friendly_message(error)}")
    raise typer.Exit(1)


def _run(coro) -> None:
    """Run a command coroutine, mapping client errors to exit code 1."""
    try:
        asyncio.run(coro)
    except HatzError as e:
        _fail(e)


async def _open_session(settings: HatzChatSettings) -> HatzSession:
    session = HatzSession(settings)
    await session.start()
    if not session.has_client:
        await session.close()
        console.print("[red]Error:[/red] No Hatz API key configured.")
        console.print("[dim]Run 'hatz-chat key set' or set the HATZ_CHAT_API_KEY environment variable.[/dim]")
        raise typer.Exit(1)
    return session


# Chat


@app.command("chat")
def chat_command(
    ctx: typer.Context,
    message: Optional[str] = typer.Argument(None, help="Message to send (omit for interactive chat)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Enable/disable streaming responses"),
    attach: Optional[List[Path]] = typer.Option(
        None, "--attach", "-a", exists=True, dir_okay=False, help="Upload and attach a file"
    ),
) -> None:
    """Start a chat session or send a single message."""
    settings = _settings(ctx)
    use_stream = settings.stream if stream is None else stream
    _run(_async_chat_command(settings, message, model, use_stream, attach or []))


async def _async_chat_command(
    settings: HatzChatSettings,
    message: Optional[str],
    model: Optional[str],
    stream: bool,
    attach: List[Path],
) -> None:
    """Async implementation of chat command."""
    session = await _open_session(settings)
    try:
        with console.status("[dim]Loading models...[/dim]"):
            await session.refresh_models()
        if model:
            session.select_model(model)

        for path in attach:
            await _attach(session, path)

        if message:
            await _send_message(session, message, stream)
        else:
            await _interactive_chat(session, stream)
    finally:
        await session.close()


async def _attach(session: HatzSession, path: Path) -> None:
    with console.status(f"[dim]Uploading {path.name}...[/dim]"):
        result = await session.attach_file(path)
    if result.file_uuid:
        console.print(f"[green]✓[/green] Attached {path.name} [dim]({result.file_uuid})[/dim]")
    else:
        console.print(f"[yellow]Uploaded {path.name} but no file id was returned; not attached.[/yellow]")


async def _send_message(session: HatzSession, message: str, stream: bool) -> None:
    """Send one message in the current conversation and print the reply."""
    if not stream:
        with console.status("[dim]Thinking...[/dim]"):
            reply = await session.send_message(message, stream=False)
        render_reply(console, reply)
        return

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # No loop signal support (e.g. Windows or a non-main thread).
        pass

    def print_token(token: str) -> None:
        console.print(token, end="", markup=False, highlight=False, soft_wrap=True)

    console.print("[blue]AI:[/blue] ", end="")
    try:
        await session.send_message(message, stream=True, on_token=print_token, cancel_event=cancel_event)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        console.print()

    if cancel_event.is_set():
        console.print("[dim](response cancelled)[/dim]")


async def _interactive_chat(session: HatzSession, stream: bool) -> None:
    """Start an interactive chat session."""
    console.print("[bold green]Hatz Chat[/bold green] - Interactive Chat")
    console.print(f"[dim]Model: {session.selected_model or 'none'}[/dim]")
    console.print(f"[dim]Streaming: {'enabled' if stream else 'disabled'}[/dim]")
    console.print("[dim]Type 'exit', 'quit', or press Ctrl+D to exit. Type '/help' for commands.[/dim]\n")

    while True:
        try:
            user_input = typer.prompt("You")
        except (KeyboardInterrupt, EOFError, typer.Abort):
            console.print("\n[dim]Goodbye![/dim]")
            break

        command = user_input.strip()
        lowered = command.lower()

        if lowered in ("exit", "quit", "q"):
            console.print("[dim]Goodbye![/dim]")
            break
        elif not command:
            continue
        elif lowered == "/help":
            _show_chat_help()
        elif lowered == "/new":
            conversation = session.new_conversation()
            console.print(f"[dim]Started conversation #{len(session.conversations)} ({conversation.id[:8]})[/dim]")
        elif lowered == "/models":
            console.print(models_table(session.available_models, session.selected_model))
        elif lowered.startswith("/model "):
            try:
                session.select_model(command.split(maxsplit=1)[1])
                console.print(f"[dim]Model set to {session.selected_model}[/dim]")
            except HatzError as e:
                console.print(f"[red]Error:[/red] {e.message}")
        elif lowered.startswith("/attach "):
            path = Path(command.split(maxsplit=1)[1]).expanduser()
            if not path.is_file():
                console.print(f"[red]Error:[/red] No such file: {path}")
                continue
            try:
                await _attach(session, path)
            except HatzError as e:
                console.print(f"[red]Error:[/red] {create_user_friendly_message(e)}")
        elif lowered == "/stream":
            stream = not stream
            console.print(f"[dim]Streaming {'enabled' if stream else 'disabled'}[/dim]")
        elif lowered == "/history":
            _show_history(session)
        elif command.startswith("/"):
            console.print(f"[yellow]Unknown command:[/yellow] {command}. Type /help for commands.")
        else:
            try:
                await _send_message(session, command, stream)
            except HatzError as e:
                # The user can simply send again.
                console.print(f"[red]Error:[/red] {create_user_friendly_message(e)}")


def _show_chat_help() -> None:
    """Show help for chat commands."""
    help_text = """[bold]Chat Commands:[/bold]

[cyan]/new[/cyan]           - Start a new conversation
[cyan]/models[/cyan]        - List available models
[cyan]/model NAME[/cyan]    - Switch model
[cyan]/attach PATH[/cyan]   - Upload a file and attach it to this conversation
[cyan]/stream[/cyan]        - Toggle streaming mode
[cyan]/history[/cyan]       - Show conversations in this session
[cyan]exit[/cyan]           - Exit the chat session

[dim]Press Ctrl+C while a reply streams to stop it.[/dim]"""

    console.print(Panel(help_text, title="Help", border_style="blue"))


def _show_history(session: HatzSession) -> None:
    table = Table(title="Conversations", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Started", style="dim")

    for index, conversation in enumerate(session.conversations, 1):
        marker = " *" if conversation is session.current else ""
        table.add_row(
            f"{index}{marker}",
            conversation.title,
            str(len(conversation.messages)),
            str(len(conversation.file_uuids)),
            conversation.created_at.strftime("%H:%M:%S"),
        )
    console.print(table)


# Models


@app.command("models")
def models_command(ctx: typer.Context) -> None:
    """List the models available to your API key."""
    _run(_async_models_command(_settings(ctx)))


async def _async_models_command(settings: HatzChatSettings) -> None:
    session = await _open_session(settings)
    try:
        with console.status("[dim]Loading models...[/dim]"):
            models = await session.refresh_models()
        if not models:
            console.print("[dim]No models available.[/dim]")
            return
        console.print(models_table(models, session.selected_model))
    finally:
        await session.close()


# Files


@files_app.command("list")
def files_list_command(ctx: typer.Context) -> None:
    """List uploaded files."""
    _run(_async_files_list(_settings(ctx)))


async def _async_files_list(settings: HatzChatSettings) -> None:
    session = await _open_session(settings)
    try:
        files = await session.list_files()
        if not files:
            console.print("[dim]No files uploaded.[/dim]")
            return
        console.print(files_table(files))
    finally:
        await session.close()


@files_app.command("upload")
def files_upload_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    mime_type: Optional[str] = typer.Option(None, "--mime-type", help="Content type (guessed when omitted)"),
) -> None:
    """Upload a file for use in chats and Apps."""
    _run(_async_files_upload(_settings(ctx), path, mime_type))


async def _async_files_upload(settings: HatzChatSettings, path: Path, mime_type: Optional[str]) -> None:
    session = await _open_session(settings)
    try:
        with console.status(f"[dim]Uploading {path.name}...[/dim]"):
            result = await session.attach_file(path, mime_type=mime_type)
        if result.file_uuid:
            console.print(f"[green]✓[/green] Uploaded {path.name}")
            console.print(f"[bold]File UUID:[/bold] [cyan]{result.file_uuid}[/cyan]")
        else:
            console.print(f"[yellow]Uploaded {path.name}, but no file UUID was found in the response:[/yellow]")
            console.print(result.raw_body, markup=False)
    finally:
        await session.close()


# Apps


@apps_app.command("list")
def apps_list_command(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Only Apps whose name or description contains TEXT"),
) -> None:
    """List the Apps available to your API key."""
    _run(_async_apps_list(_settings(ctx), search))


async def _async_apps_list(settings: HatzChatSettings, search: Optional[str] = None) -> None:
    session = await _open_session(settings)
    try:
        with console.status("[dim]Loading Apps...[/dim]"):
            apps = await session.refresh_apps()
        if not apps:
            console.print("[dim]No Apps available.[/dim]")
            return
        apps = filter_apps(apps, search)
        if not apps:
            console.print(f"[dim]No Apps found matching '{escape(search.strip())}'.[/dim]")
            return
        console.print(apps_table(apps))
        if any(not app.is_queryable for app in apps):
            console.print("[dim]Apps marked ✗ have no valid UUID and cannot be run.[/dim]")
    finally:
        await session.close()


@apps_app.command("show")
def apps_show_command(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="App UUID"),
) -> None:
    """Show an App's details and inputs."""
    _run(_async_apps_show(_settings(ctx), app_id))


async def _async_apps_show(settings: HatzChatSettings, app_id: str) -> None:
    session = await _open_session(settings)
    try:
        form = await session.load_app(app_id)
        app_detail(console, form.app)
    finally:
        await session.close()


@apps_app.command("run")
def apps_run_command(
    ctx: typer.Context,
    app_id: str = typer.Argument(..., help="App UUID"),
    inputs: Optional[List[str]] = typer.Option(None, "--input", "-i", help="Input as variable=value (repeatable)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model override"),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Uploaded file UUID to pass (repeatable)"),
    prompt_missing: bool = typer.Option(
        True, "--prompt/--no-prompt", help="Prompt for missing required inputs when interactive"
    ),
) -> None:
    """Run an App with the given inputs."""
    try:
        values = _parse_inputs(inputs or [])
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    interactive = prompt_missing and sys.stdin.isatty()
    _run(_async_apps_run(_settings(ctx), app_id, values, model, files or [], interactive))


def _parse_inputs(pairs: List[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid input '{pair}'. Use variable=value")
        key, value = pair.split("=", 1)
        values[key.strip()] = value
    return values


async def _async_apps_run(
    settings: HatzChatSettings,
    app_id: str,
    values: Dict[str, str],
    model: Optional[str],
    file_uuids: List[str],
    interactive: bool,
) -> None:
    session = await _open_session(settings)
    try:
        with console.status("[dim]Loading App...[/dim]"):
            await session.refresh_models()
            form = await session.load_app(app_id)

        unknown = sorted(set(values) - set(form.values))
        if unknown:
            console.print(f"[red]Error:[/red] App '{form.app.name}' has no input(s): {', '.join(unknown)}")
            raise typer.Exit(1)
        form.values.update(values)

        if model:
            form.model = model
        if interactive:
            _prompt_missing_inputs(form)

        with console.status(f"[dim]Running {form.app.name}...[/dim]"):
            output = await session.run_app(form, file_uuids)
        render_reply(console, output, title=form.app.name)
    finally:
        await session.close()


def _prompt_missing_inputs(form: AppForm) -> None:
    """Ask for each required input that is still empty."""
    for user_input in form.missing:
        if user_input.description:
            console.print(f"[dim]{user_input.description}[/dim]")
        if user_input.is_long_form:
            console.print(
                f"[bold]{user_input.label}[/bold] [dim](multi-line; end with a line containing only "
                f"'{MULTILINE_END}')[/dim]"
            )
            form.set_value(user_input.variable_name, _read_multiline())
        else:
            form.set_value(user_input.variable_name, typer.prompt(user_input.label))


def _read_multiline() -> str:
    lines = []
    for line in sys.stdin:
        line = line.rstrip("\n")
        if line == MULTILINE_END:
            break
        lines.append(line)
    return "\n".join(lines)


# API key


@key_app.command("set")
def key_set_command(
    ctx: typer.Context,
    api_key: Optional[str] = typer.Argument(None, help="API key (prompted for when omitted)"),
) -> None:
    """Store an API key and check it by loading the model list."""
    if api_key is None:
        api_key = typer.prompt("Hatz API key", hide_input=True)
    _run(_async_key_set(_settings(ctx), api_key))


async def _async_key_set(settings: HatzChatSettings, api_key: str) -> None:
    session = HatzSession(settings)
    try:
        if not api_key.strip():
            await session.clear_api_key()
            console.print("[green]✓[/green] Stored API key cleared")
            return

        await session.set_api_key(api_key, refresh=False)
        console.print(f"[green]✓[/green] API key stored in {session.key_store.path}")
        try:
            with console.status("[dim]Checking key...[/dim]"):
                models = await session.refresh_models()
        except HatzError as e:
            console.print(f"[yellow]Warning:[/yellow] could not load models with this key: {create_user_friendly_message(e)}")
            return
        console.print(f"[dim]Loaded {len(models)} models.[/dim]")
        if settings.api_key and settings.api_key != api_key:
            console.print("[yellow]Note:[/yellow] HATZ_CHAT_API_KEY is set and takes precedence over the stored key.")
    finally:
        await session.close()


@key_app.command("clear")
def key_clear_command(ctx: typer.Context) -> None:
    """Remove the stored API key."""
    settings = _settings(ctx)
    removed = ApiKeyStore(settings.credentials_path).clear()
    if removed:
        console.print("[green]✓[/green] Stored API key removed")
    else:
        console.print("[dim]No stored API key.[/dim]")
    if settings.api_key:
        console.print("[yellow]Note:[/yellow] HATZ_CHAT_API_KEY is still set in the environment.")


@key_app.command("show")
def key_show_command(ctx: typer.Context) -> None:
    """Show which API key is in effect (masked)."""
    settings = _settings(ctx)
    store = ApiKeyStore(settings.credentials_path)
    stored = store.load()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source", style="cyan")
    table.add_column("Key", style="green", no_wrap=True)
    table.add_row("environment / settings", ApiKeyStore.mask(settings.api_key))
    table.add_row(f"stored ({store.path})", ApiKeyStore.mask(stored))
    console.print(table)


# Configuration


@app.command("config")
def config_command(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", "-s", help="Show current configuration"),
    set_key: Optional[str] = typer.Option(None, "--set", help="Set configuration key=value"),
    scope: str = typer.Option("user", "--scope", help="Configuration scope (user, project)"),
    init: bool = typer.Option(False, "--init", help="Create project settings and an example .env file"),
) -> None:
    """Show or change Hatz Chat configuration."""
    settings = _settings(ctx)

    if init:
        _init_config_files()
        return

    if set_key:
        _set_config_value(set_key, scope)
        return

    if show:
        _show_current_config(settings)
        return

    console.print("[yellow]Use one of the following options:[/yellow]")
    console.print("  --show          Show current configuration")
    console.print("  --set <key=val> Set configuration value")
    console.print("  --init          Create project configuration files")


def _show_current_config(settings: HatzChatSettings) -> None:
    loader = HierarchicalConfigLoader()
    loader.load_all_settings()

    table = Table(title="Current Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_column("Source", style="dim")

    for key, value in settings.to_dict().items():
        sources = loader.get_setting_sources(key)
        source_info = next(
            (name for name in ("environment", "project", "user", "default") if name in sources),
            "default",
        )
        table.add_row(key, str(value), source_info)

    console.print(table)
    for error in loader.errors:
        console.print(f"[yellow]Warning:[/yellow] {error}")


def _set_config_value(set_key: str, scope: str) -> None:
    if "=" not in set_key:
        console.print("[red]Error:[/red] Use format --set key=value")
        raise typer.Exit(1)

    key, value = (part.strip() for part in set_key.split("=", 1))

    if key == "api_key":
        console.print("[red]Error:[/red] Use 'hatz-chat key set' to store the API key")
        raise typer.Exit(1)
    if key not in HatzChatSettings.model_fields:
        console.print(f"[red]Error:[/red] Unknown setting '{key}'")
        raise typer.Exit(1)

    try:
        setting_scope = SettingScope(scope.lower())
    except ValueError:
        setting_scope = None
    if setting_scope not in (SettingScope.USER, SettingScope.PROJECT):
        console.print(f"[red]Error:[/red] Invalid scope '{scope}'. Use: user or project")
        raise typer.Exit(1)

    converted_value = _convert_config_value(key, value)
    try:
        HatzChatSettings(**{key: converted_value})
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid value for {key}: {e.errors()[0]['msg']}")
        raise typer.Exit(1)

    loader = HierarchicalConfigLoader()
    loader.load_all_settings()
    if loader.update_setting(setting_scope, key, converted_value):
        console.print(f"[green]✓[/green] Set {key} = {converted_value} in {setting_scope.value} scope")
    else:
        console.print(f"[red]Error:[/red] Failed to save setting {key}")
        raise typer.Exit(1)


def _convert_config_value(key: str, value: str) -> Any:
    """Convert a command line string the same way environment values are."""
    convert = ENV_CONVERTERS.get(key, str)
    try:
        return convert(value)
    except ValueError:
        # Left as text so settings validation reports the problem.
        return value


def _init_config_files() -> None:
    console.print("[bold blue]Initializing Hatz Chat configuration files...[/bold blue]")

    loader = HierarchicalConfigLoader()
    loader.load_all_settings()
    project_settings = loader.get_settings_file(SettingScope.PROJECT)
    if project_settings is not None and project_settings.exists:
        console.print(f"[yellow]Project settings already exist:[/yellow] {project_settings.path}")
    elif loader.save_settings(SettingScope.PROJECT, {"stream": True}):
        console.print(f"[green]✓[/green] Created project settings: {loader.get_settings_file(SettingScope.PROJECT).path}")

    env_loader = EnvFileLoader()
    env_file_path = env_loader.working_directory / EnvFileLoader.CONFIG_DIR_NAME / EnvFileLoader.ENV_FILE_NAME
    if env_file_path.exists():
        console.print(f"[yellow]Example .env file already exists:[/yellow] {env_file_path}")
    else:
        created = env_loader.create_example_env_file()
        console.print(f"[green]✓[/green] Created example .env file: {created}")

    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Run 'hatz-chat key set' to store your API key")
    console.print("2. Use 'hatz-chat config --show' to view your configuration")


def main() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
