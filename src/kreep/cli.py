"""kreep command line interface.

Commands
--------
  create    Store a new credential
  list      List all credentials in a rich table
  peek      Show a single credential
  remove    Delete a credential
  export    Render a browser userscript for a credential
  run       Serve capsules over HTTP
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from pydantic import ValidationError

from . import __version__
from .export import ExportFormat, ScriptContext, render_userscript
from .models import Credential, CredentialIndexer
from .store import Store, StoreError, StoreFormatError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & consoles
# ---------------------------------------------------------------------------

_THEME = Theme(
    {
        "success": "bold green",
        "warning": "bold yellow",
        "danger": "bold red",
        "muted": "dim",
        "label": "cyan",
        "highlight": "bold white",
    }
)

console = Console(theme=_THEME)
err = Console(stderr=True, theme=_THEME)

app = typer.Typer(
    name="kreep",
    help="[bold cyan]kreep[/bold cyan]: local credential vault serving sealed capsules.",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _default_db_path() -> Path:
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / "kreep" / "storage.db"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err, show_path=False)],
        force=True,
    )


def _open_store(ctx: typer.Context) -> Store[Credential]:
    path: Path = ctx.obj["db"]
    try:
        return Store.open(path, Credential, CredentialIndexer())
    except StoreError as exc:
        err.print(f"[danger]{escape(str(exc))}[/danger]")
        raise typer.Exit(1) from exc


def _get_credential(store: Store[Credential], credential_id: uuid.UUID) -> Credential:
    try:
        cred = store.get(credential_id.bytes)
    except StoreError as exc:
        err.print(f"[danger]{escape(str(exc))}[/danger]")
        raise typer.Exit(1) from exc
    if cred is None:
        err.print(f"[danger]Credential {credential_id} not found.[/danger]")
        raise typer.Exit(1)
    return cred


def _render_credential(cred: Credential, *, show_password: bool, show_api_key: bool) -> None:
    body = Text()

    def row(label: str, value: str, style: str = "highlight") -> None:
        body.append(f"  {label:<10}", style="label")
        body.append(value + "\n", style=style)

    row("User", cred.user)
    if show_password:
        row("Password", cred.password, style="bold green")
    else:
        row("Password", cred.masked_password, style="muted")
    if show_api_key:
        row("API Key", cred.api_key_hex, style="bold yellow")

    console.print(Panel(body, title=f"[bold cyan]{cred.id}[/bold cyan]", expand=False, border_style="cyan"))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.callback()
def root(
    ctx: typer.Context,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", envvar="KREEP_DB", help="Custom database path.", show_default=False),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
) -> None:
    """Local credential vault serving sealed capsules."""
    _configure_logging(verbose)
    ctx.obj = {"db": db or _default_db_path()}


@app.command()
def create(
    ctx: typer.Context,
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="Sets the user of the credential.")] = None,
    password: Annotated[
        Optional[str], typer.Option("--password", "-p", help="Sets the password of the credential.")
    ] = None,
) -> None:
    """Store a new credential with a freshly generated id and api key."""
    if user is None:
        user = Prompt.ask("  User", console=console)
    if password is None:
        password = typer.prompt("  Password", hide_input=True)

    store = _open_store(ctx)
    cred = Credential.new(user, password)
    try:
        store.set(cred)
    except StoreError as exc:
        err.print(f"[danger]{escape(str(exc))}[/danger]")
        raise typer.Exit(1) from exc
    finally:
        store.close()
    logger.debug("Created credential %s", cred.id)
    console.print(f"[success]Inserted credential[/success] [bold]{cred.id}[/bold].")


@app.command("list")
def list_creds(
    ctx: typer.Context,
    show_password: Annotated[
        bool, typer.Option("--show-password", "-p", help="Display passwords in clear text.")
    ] = False,
    show_api_key: Annotated[bool, typer.Option("--show-api-key", "-k", help="Display api keys in clear text.")] = False,
) -> None:
    """List all credentials in a formatted table."""
    store = _open_store(ctx)
    table = Table(box=box.ROUNDED, header_style="bold cyan", title_style="bold")
    table.add_column("Id", style="muted", no_wrap=True)
    table.add_column("User", style="bold white")
    table.add_column("Password")
    if show_api_key:
        table.add_column("API Key", style="yellow", no_wrap=True)

    try:
        for item in store:
            if isinstance(item, StoreFormatError):
                err.print(f"[warning]Skipping unreadable record:[/warning] {escape(str(item))}")
                continue
            cells = [
                Text(str(item.id)),
                Text(item.user),
                Text(item.password if show_password else item.masked_password),
            ]
            if show_api_key:
                cells.append(Text(item.api_key_hex))
            table.add_row(*cells)
        total = len(store)
    except StoreError as exc:
        err.print(f"[danger]{escape(str(exc))}[/danger]")
        raise typer.Exit(1) from exc
    finally:
        store.close()

    table.title = f"Credentials ({total} total)"
    console.print(table)


@app.command()
def peek(
    ctx: typer.Context,
    credential_id: Annotated[uuid.UUID, typer.Argument(metavar="ID", help="Id of the credential to peek.")],
    show_password: Annotated[
        bool, typer.Option("--show-password", "-p", help="Display password in clear text.")
    ] = False,
    show_api_key: Annotated[bool, typer.Option("--show-api-key", "-k", help="Display api key in clear text.")] = False,
) -> None:
    """Show a single credential."""
    store = _open_store(ctx)
    try:
        cred = _get_credential(store, credential_id)
    finally:
        store.close()
    _render_credential(cred, show_password=show_password, show_api_key=show_api_key)


@app.command()
def remove(
    ctx: typer.Context,
    credential_id: Annotated[uuid.UUID, typer.Argument(metavar="ID", help="Id of the credential to remove.")],
) -> None:
    """Permanently delete a credential."""
    store = _open_store(ctx)
    try:
        removed = store.remove(credential_id.bytes)
    except StoreError as exc:
        err.print(f"[danger]{escape(str(exc))}[/danger]")
        raise typer.Exit(1) from exc
    finally:
        store.close()

    if not removed:
        err.print(f"[danger]Credential {credential_id} not found.[/danger]")
        raise typer.Exit(1)
    console.print(f"[danger]Deleted credential[/danger] [bold]{credential_id}[/bold].")


@app.command("export")
def export_cmd(
    ctx: typer.Context,
    credential_id: Annotated[uuid.UUID, typer.Argument(metavar="ID", help="Id of the credential to export.")],
    page_url: Annotated[str, typer.Option("--page-url", "-u", help="Page url the script runs on.")],
    fmt: Annotated[ExportFormat, typer.Option("--format", "-f", help="Export format.")] = ExportFormat.tampermonkey,
    script_name: Annotated[str, typer.Option("--script-name", "-n", help="Custom script name.")] = "Kreep Auto Fill",
    script_description: Annotated[
        str, typer.Option("--script-description", "-d", help="Custom script description.")
    ] = "Kreep Auto Fill",
    script_version: Annotated[str, typer.Option("--script-version", help="Custom script version.")] = "1.0",
    http_host: Annotated[str, typer.Option("--http-host", "-H", help="kreep HTTP host to connect to.")] = "localhost",
    http_port: Annotated[int, typer.Option("--http-port", "-p", help="kreep HTTP port to connect to.")] = 4500,
    user_selector: Annotated[str, typer.Option("--user-input-selector", help="User input CSS selector.")] = "",
    password_selector: Annotated[
        str, typer.Option("--password-input-selector", help="Password input CSS selector.")
    ] = "",
    submit_selector: Annotated[
        Optional[str], typer.Option("--submit-button-selector", help="Submit button CSS selector.")
    ] = None,
) -> None:
    """Print a browser userscript that auto-fills a login form from a capsule.

    The script @requires /static/kreep.js from the server, so start it with
    [bold]kreep run --script FILE[/bold].
    """
    store = _open_store(ctx)
    try:
        cred = _get_credential(store, credential_id)
    finally:
        store.close()

    try:
        context = ScriptContext(
            script_name=script_name,
            script_description=script_description,
            script_version=script_version,
            script_page_url=page_url,
            http_host=http_host,
            http_port=http_port,
            user_input_selector=user_selector,
            password_input_selector=password_selector,
            submit_button_selector=submit_selector,
        ).for_credential(cred)
    except ValidationError as exc:
        for error in exc.errors():
            err.print(f"[danger]Invalid {error['loc'][0]}: {escape(error['msg'])}[/danger]")
        raise typer.Exit(1) from exc
    # plain stdout so the script can be piped into a file
    typer.echo(render_userscript(context, fmt))


@app.command()
def run(
    ctx: typer.Context,
    host: Annotated[str, typer.Option("--host", "-H", envvar="KREEP_HOST", help="HTTP host to serve on.")] = "0.0.0.0",
    port: Annotated[int, typer.Option("--port", "-p", envvar="KREEP_PORT", help="HTTP port to serve on.")] = 4500,
    script: Annotated[
        Optional[Path],
        typer.Option(
            "--script",
            envvar="KREEP_SCRIPT",
            help="Browser client script served at /static/kreep.js. "
            "Without it that route is 404 and exported userscripts cannot load their client.",
        ),
    ] = None,
) -> None:
    """Serve capsules over HTTP."""
    import uvicorn

    from .server import create_app

    store = _open_store(ctx)
    console.print(
        f"[success]kreep {__version__}[/success] serving [bold]{len(store)}[/bold] credential(s) "
        f"on [bold]http://{host}:{port}[/bold]"
    )
    if script is None:
        err.print("[warning]No --script given:[/warning] /static/kreep.js will answer 404.")
    try:
        uvicorn.run(create_app(store, script), host=host, port=port, log_level="info")
    finally:
        store.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    app()


if __name__ == "__main__":
    main()
