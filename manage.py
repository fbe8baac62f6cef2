import asyncio
import json
from pathlib import Path
import subprocess
from typing import Annotated

from rich import print
from rich.table import Table
import typer

from tierkeeper.core.config import settings

app = typer.Typer()


def _snapshot_table(title: str, snapshot, possibly_stale: bool = False) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Field")
    table.add_column("Value")
    for field, value in snapshot.model_dump(mode="json").items():
        table.add_row(field, "-" if value is None else str(value))
    if possibly_stale:
        table.add_row("possibly_stale", "[yellow]true[/yellow]")
    return table


async def initdb_task() -> None:
    """Create every table the models declare. Existing tables are left alone."""
    from tierkeeper.core.db import dispose_db, init_db

    try:
        await init_db()
        print("[green]Database tables created[/green]")
    finally:
        await dispose_db()


async def reconcile_task(user_id: str, email: str) -> None:
    """
    Run one explicit reconciliation for a user and print the resulting snapshot.

    Stripe failures do not fail the command; the cached snapshot is printed
    and flagged as possibly stale.
    """
    from tierkeeper.apps.tiers.dependencies import tier_reconciler
    from tierkeeper.core.db import dispose_db
    from tierkeeper.core.enums import RefreshTrigger
    from tierkeeper.core.services import Stripe

    try:
        state = await tier_reconciler.refresh(
            user_id, email, trigger=RefreshTrigger.EXPLICIT
        )
    finally:
        await Stripe.aclose()
        await dispose_db()

    if state.snapshot is None:
        print(f"[red]No snapshot for {user_id}[/red]")
        raise typer.Exit(1)
    if state.possibly_stale:
        print("[yellow]Stripe unreachable; showing the cached snapshot[/yellow]")
    print(_snapshot_table(f"Tier for {user_id}", state.snapshot, state.possibly_stale))


async def show_task(user_id: str) -> None:
    from tierkeeper.apps.tiers.dependencies import profile_cache
    from tierkeeper.core.db import dispose_db

    try:
        snapshot = await profile_cache.read(user_id)
    finally:
        await dispose_db()

    if snapshot is None:
        print(f"[yellow]No cached profile for {user_id}[/yellow]")
        raise typer.Exit(1)
    print(_snapshot_table(f"Cached tier for {user_id}", snapshot))


@app.command()
def initdb():
    """Create the database tables."""
    asyncio.run(initdb_task())


@app.command()
def reconcile(
    user_id: Annotated[str, typer.Argument(help="The user's id at the identity provider.")],
    email: Annotated[str, typer.Argument(help="The user's contact address.")],
):
    """
    Reconcile one user's tier with Stripe and print the result.

    Examples:
        python manage.py reconcile 3f1c9a user@example.com
    """
    asyncio.run(reconcile_task(user_id, email.strip().lower()))


@app.command()
def show(user_id: Annotated[str, typer.Argument(help="The user's id.")]):
    """Print the cached tier snapshot without calling Stripe."""
    asyncio.run(show_task(user_id))


@app.command()
def runserver():
    try:
        server_command = (
            "uvicorn tierkeeper.main:app --host 127.0.0.1 --port 8000 --reload"
            if settings.DEBUG
            else "uvicorn tierkeeper.main:app --host 0.0.0.0 --port 8000"
        )
        print(f"Running FastAPI server: {server_command}")
        subprocess.run(server_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.command()
def generateopenapi():
    """
    Generates the OpenAPI schema for the FastAPI application and saves it to a JSON file.
    """
    from tierkeeper.main import app as fastapi_app

    openapi_path = Path("openapi.json")
    with openapi_path.open("w", encoding="utf-8") as f:
        json.dump(fastapi_app.openapi(), f, ensure_ascii=False, indent=2)
    print(f"[green]OpenAPI schema generated at {openapi_path.name}[/green]")


if __name__ == "__main__":
    app()
