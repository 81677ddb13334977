"""
Command Line Interface for Image Control Tower.
"""

import asyncio
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..images.history import TagEventHistory
from ..images.services import ImageStreamService, signature_tracker
from ..logging_config import configure_logging
from ..worker.controller import ImportController
from ..worker.importer import RegistryImporter
from ..worker.repository import SqlStreamRepository
from ..worker.verifier import SimpleSigningVerifier, verify_unevaluated

app = typer.Typer(help="Image Control Tower - image streams and tag history")
console = Console()


def _session():
    asyncio.run(init_database())
    return get_session_local()()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Start the API server (and its import controller)."""
    settings = get_settings()
    rprint(Panel.fit("Starting Image Control Tower", style="bold blue"))
    uvicorn.run(
        "image_control_tower.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


@app.command()
def streams(namespace: Optional[str] = typer.Option(None, help="Only this namespace")):
    """List image streams."""
    db = _session()
    try:
        items = ImageStreamService(db).list_streams(namespace, limit=1000)
    finally:
        db.close()

    if not items:
        console.print("No image streams")
        return

    table = Table(title="Image Streams", show_header=True, header_style="bold cyan")
    table.add_column("Namespace", style="yellow")
    table.add_column("Name", style="green")
    table.add_column("Generation", justify="right")
    table.add_column("Tags")
    table.add_column("Version", justify="right", style="magenta")

    for stream in items:
        table.add_row(
            stream.namespace,
            stream.name,
            str(stream.generation),
            ", ".join(stream.spec.tag_names()) or "-",
            str(stream.resource_version),
        )
    console.print(table)


@app.command()
def history(
    name: str = typer.Argument(..., help="Image stream name"),
    tag: str = typer.Argument(..., help="Tag name"),
    namespace: str = typer.Option("default", help="Namespace of the stream"),
):
    """Show a tag's history, most recent first."""
    db = _session()
    try:
        stream = ImageStreamService(db).get_stream(namespace, name)
    finally:
        db.close()

    if stream is None:
        console.print(f"❌ Image stream {namespace}/{name} not found")
        raise typer.Exit(code=1)

    events = TagEventHistory(stream.status).events(tag)
    table = Table(title=f"{namespace}/{name}:{tag}", show_header=True, header_style="bold magenta")
    table.add_column("Generation", justify="right")
    table.add_column("Image", style="green")
    table.add_column("Pull spec")
    table.add_column("Created")
    for event in events:
        table.add_row(
            str(event.generation),
            event.image or "-",
            event.docker_image_reference,
            event.created.isoformat(),
        )
    console.print(table)

    entry = stream.status.get_tag(tag)
    for condition in entry.conditions if entry else []:
        console.print(
            f"{condition.type}={condition.status.value} "
            f"(generation {condition.generation}) {condition.reason} {condition.message}".rstrip()
        )


@app.command()
def reconcile(
    name: Optional[str] = typer.Argument(None, help="Image stream name (all if omitted)"),
    namespace: str = typer.Option("default", help="Namespace of the stream"),
    recheck: bool = typer.Option(False, help="Re-import scheduled tags"),
):
    """Run one reconcile pass and wait for its imports."""
    settings = get_settings()
    configure_logging(settings)
    asyncio.run(init_database())

    async def run() -> int:
        controller = ImportController.from_settings(
            SqlStreamRepository(get_session_local(), actor_id="cli"),
            RegistryImporter(default_registry=settings.registry_default_host),
            settings,
        )
        try:
            if name:
                started = len(await controller.sync(namespace, name, recheck=recheck))
            else:
                started = await controller.sync_all(recheck=recheck)
            await controller.wait_idle()
            return started
        finally:
            await controller.stop()

    started = asyncio.run(run())
    console.print(f"✅ Reconciled; {started} import(s) run")


@app.command()
def verify(image: str = typer.Argument(..., help="Image name")):
    """Evaluate the image's signatures that no verifier has looked at."""
    db = _session()
    try:
        updated = verify_unevaluated(signature_tracker(db), SimpleSigningVerifier(), image)
    finally:
        db.close()

    for signature in updated:
        statuses = ", ".join(f"{c.type}={c.status.value}" for c in signature.conditions)
        console.print(f"{signature.name}: {statuses}")
    console.print(f"✅ Evaluated {len(updated)} signature(s)")


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Image Control Tower v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
