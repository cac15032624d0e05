"""Rich rendering for replies, models, files and Apps."""

from typing import Iterable, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..core.client import AIModel, App, RemoteFile
from ..utils.formatting import likely_needs_horizontal_scroll, truncate


def render_reply(console: Console, text: str, title: str = "AI") -> None:
    """Print a reply as Markdown, or unwrapped when it holds wide content."""
    if not text:
        console.print(f"[blue]{title}:[/blue] [dim](empty response)[/dim]")
        return

    console.print(f"[blue]{title}:[/blue]")
    if likely_needs_horizontal_scroll(text):
        console.print(Text(text), soft_wrap=True)
    else:
        console.print(Markdown(text))


def models_table(models: Iterable[AIModel], selected: Optional[str] = None) -> Table:
    table = Table(title="Available Models", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Developer", style="yellow")
    table.add_column("Display Name", style="green")
    table.add_column("Max Tokens", justify="right")
    table.add_column("Vision", justify="center")

    for model in models:
        name = f"{model.name} *" if model.name == selected else model.name
        table.add_row(
            name,
            model.developer,
            model.display_name,
            str(model.max_tokens),
            "✓" if model.vision else "",
        )
    return table


def files_table(files: Iterable[RemoteFile]) -> Table:
    table = Table(title="Files", show_header=True, header_style="bold magenta")
    table.add_column("UUID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Type", style="yellow")
    table.add_column("Size", justify="right")
    table.add_column("Created", style="dim")

    for remote_file in files:
        table.add_row(
            remote_file.identifier or "",
            remote_file.label,
            remote_file.mime_type or "",
            "" if remote_file.size is None else str(remote_file.size),
            remote_file.created_at or "",
        )
    return table


def apps_table(apps: Iterable[App]) -> Table:
    table = Table(title="Apps", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Queryable", justify="center")
    table.add_column("Default Model", style="yellow")
    table.add_column("Description")

    for app in apps:
        table.add_row(
            app.name,
            "(missing)" if app.has_placeholder_id else app.id,
            "[green]✓[/green]" if app.is_queryable else "[red]✗[/red]",
            app.default_model or "",
            truncate(app.description),
        )
    return table


def app_detail(console: Console, app: App) -> None:
    """Print an App header followed by its inputs in presentation order."""
    lines = [f"[bold]{escape(app.name)}[/bold]"]
    if app.description:
        lines.append(escape(app.description))
    lines.append("")
    lines.append(f"[dim]ID:[/dim] {app.id}")
    if app.default_model:
        lines.append(f"[dim]Default model:[/dim] {app.default_model}")
    lines.append(
        f"[dim]Files:[/dim] {len(app.files)}  "
        f"[dim]Constants:[/dim] {len(app.constants or [])}  "
        f"[dim]Prompt sections:[/dim] {len(app.prompt_sections)}"
    )
    if not app.is_queryable:
        lines.append("")
        lines.append("[red]This App is missing a valid UUID, so it cannot be queried.[/red]")

    console.print(Panel("\n".join(lines), title="App", border_style="blue"))

    if not app.user_inputs:
        console.print("[dim]This App has no inputs.[/dim]")
        return

    table = Table(title="Inputs", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Variable", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Required", justify="center")
    table.add_column("Type", style="yellow")
    table.add_column("Description")

    for user_input in app.ordered_inputs:
        input_type = user_input.variable_type
        if user_input.is_long_form:
            input_type = f"{input_type} (multi-line)"
        table.add_row(
            str(user_input.position),
            user_input.variable_name,
            user_input.display_name,
            "[red]*[/red]" if user_input.required else "",
            input_type,
            user_input.description,
        )
    console.print(table)
