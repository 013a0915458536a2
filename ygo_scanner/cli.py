"""Command-line interface for the Yu-Gi-Oh! card scanner."""

import asyncio
import json
import mimetypes
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .core.types import CardRecord, EnhancementMode, EnhancementRequest, ManualHints, ScanAttempt
from .imaging.source import ImagePayload
from .services import build_services
from .utils.config import settings
from .utils.error_handler import CardScannerError, InvalidRequest
from .utils.log import configure_logging, get_logger

logger = get_logger(__name__)

# Rich consoles; hints and failures go to stderr so --json output stays parseable
console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="ygo-scanner",
    help="Yu-Gi-Oh! Card Scanner - photo to structured card record",
    add_completion=False
)

DEFAULT_OWNER = "local"


def _run(operation):
    """Build services, run ``operation(services)`` on a fresh loop and close everything."""
    configure_logging(settings.LOG_LEVEL)

    async def runner():
        services = build_services()
        try:
            return await operation(services)
        finally:
            await services.aclose()

    try:
        return asyncio.run(runner())
    except InvalidRequest as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(2)
    except CardScannerError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(1)


def _load_payload(image: str) -> ImagePayload:
    try:
        if image.startswith("data:"):
            return ImagePayload.from_string(image)
        path = Path(image)
        if not path.is_file():
            raise typer.BadParameter(f"No such image file: {image}")
        content_type, _ = mimetypes.guess_type(path.name)
        return ImagePayload.from_upload(path.read_bytes(), content_type)
    except InvalidRequest as e:
        raise typer.BadParameter(e.message)


def _status_style(status: str) -> str:
    return {"identified": "green", "failed": "red"}.get(status, "yellow")


def _print_scan(scan: ScanAttempt, card: Optional[CardRecord]) -> None:
    status = scan.status.value
    confidence = f"{scan.confidence:.0%}" if scan.confidence is not None else "-"
    console.print(Panel.fit(
        f"[bold]Scan[/bold] {scan.id}\n"
        f"Status: [{_status_style(status)}]{status}[/{_status_style(status)}]  Confidence: {confidence}",
        border_style=_status_style(status)
    ))

    diagnostics = scan.extracted_text
    if diagnostics is not None and diagnostics.error:
        console.print(f"[red]Error:[/red] {diagnostics.error}")
    if diagnostics is not None and diagnostics.catalog is not None:
        catalog = diagnostics.catalog
        note = " [yellow](ambiguous)[/yellow]" if catalog.ambiguous else ""
        console.print(f"Catalog match: {catalog.strategy} #{catalog.external_code}{note}")

    if card is None:
        return

    table = Table(title="Card")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Name", card.name)
    table.add_row("Type", card.type)
    table.add_row("Attribute", card.attribute or "-")
    table.add_row("Level", str(card.level) if card.level is not None else "-")
    table.add_row("ATK / DEF", f"{card.attack if card.attack is not None else '-'} / "
                               f"{card.defense if card.defense is not None else '-'}")
    table.add_row("Rarity", card.rarity)
    table.add_row("Catalog ID", card.external_code or "-")
    table.add_row("Description", card.description)
    console.print(table)


def _emit(scan: ScanAttempt, card: Optional[CardRecord], as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps({
            "scan": scan.to_dict(),
            "card": card.to_dict() if card else None,
        }, indent=2))
    else:
        _print_scan(scan, card)


@app.command()
def scan(
    image: str = typer.Argument(..., help="Image file path or base64 data URI"),
    owner: str = typer.Option(DEFAULT_OWNER, "--owner", "-u", help="Owner id recorded on the scan"),
    as_json: bool = typer.Option(False, "--json", help="Print the scan and card as JSON"),
):
    """Submit a card photo and run recognition on it."""
    payload = _load_payload(image)

    async def operation(services):
        with console.status("[bold green]Recognizing card...", spinner="dots"):
            return await services.lifecycle.submit(owner, payload)

    outcome = _run(operation)
    _emit(outcome.scan, outcome.card, as_json)
    if not outcome.success:
        if not as_json:
            err_console.print("[dim]💡 Use 'ygo-scanner retry' or 'ygo-scanner enhance' on this scan[/dim]")
        raise typer.Exit(1)


@app.command()
def retry(
    scan_id: str = typer.Argument(..., help="Failed scan to retry"),
    owner: str = typer.Option(DEFAULT_OWNER, "--owner", "-u", help="Owner of the scan"),
    as_json: bool = typer.Option(False, "--json", help="Print the scan and card as JSON"),
):
    """Re-run recognition on a failed scan from its original image."""
    async def operation(services):
        with console.status("[bold green]Retrying scan...", spinner="dots"):
            return await services.lifecycle.retry(scan_id, owner)

    outcome = _run(operation)
    _emit(outcome.scan, outcome.card, as_json)
    if not outcome.success:
        raise typer.Exit(1)


@app.command()
def enhance(
    scan_id: str = typer.Argument(..., help="Scan to identify again"),
    mode: EnhancementMode = typer.Option(EnhancementMode.AUTO, "--mode", "-m", help="auto, manual or hybrid"),
    name: Optional[str] = typer.Option(None, "--name", help="Card name hint"),
    card_type: Optional[str] = typer.Option(None, "--type", help="Card type hint (Monster/Spell/Trap)"),
    attribute: Optional[str] = typer.Option(None, "--attribute", help="Attribute hint, e.g. DARK"),
    known_text: Optional[str] = typer.Option(None, "--known-text", help="Any text you can read on the card"),
    description: Optional[str] = typer.Option(None, "--description", help="Free-form description hint"),
    owner: str = typer.Option(DEFAULT_OWNER, "--owner", "-u", help="Owner of the scan"),
    as_json: bool = typer.Option(False, "--json", help="Print the scan and card as JSON"),
):
    """Identify a scan again, optionally with hints."""
    request = EnhancementRequest(
        original_scan_id=scan_id,
        mode=mode,
        manual_hints=ManualHints.from_mapping({
            "cardName": name,
            "cardType": card_type,
            "attribute": attribute,
            "knownText": known_text,
            "description": description,
        }),
    )

    async def operation(services):
        with console.status(f"[bold green]Enhancing scan ({mode.value})...", spinner="dots"):
            return await services.enhancer.enhance(request, owner)

    outcome = _run(operation)
    if outcome.scan is not None:
        _emit(outcome.scan, outcome.card, as_json)
    if not outcome.success:
        err_console.print(f"[red]❌ {outcome.message}[/red]")
        raise typer.Exit(1)
    if outcome.reasoning and not as_json:
        console.print(f"[dim]Reasoning: {outcome.reasoning}[/dim]")


@app.command()
def show(
    scan_id: str = typer.Argument(..., help="Scan to display"),
    as_json: bool = typer.Option(False, "--json", help="Print the scan and card as JSON"),
):
    """Show a scan and the card it resolved to."""
    async def operation(services):
        found = services.lifecycle.get(scan_id)
        card = services.lifecycle.get_card(found.resolved_card_ref) if found.resolved_card_ref else None
        return found, card

    found, card = _run(operation)
    _emit(found, card, as_json)


@app.command()
def history(
    owner: str = typer.Option(DEFAULT_OWNER, "--owner", "-u", help="Owner whose scans to list"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of scans"),
    offset: int = typer.Option(0, "--offset", help="Number of scans to skip"),
):
    """List an owner's scans, newest first."""
    async def operation(services):
        scans = services.lifecycle.history(owner, limit=limit, offset=offset)
        cards = {
            s.resolved_card_ref: services.lifecycle.get_card(s.resolved_card_ref)
            for s in scans if s.resolved_card_ref
        }
        return scans, cards

    scans, cards = _run(operation)
    if not scans:
        console.print("[yellow]⚠ No scans found[/yellow]")
        return

    table = Table(title=f"Scans for {owner}")
    table.add_column("Scan", style="cyan")
    table.add_column("Created")
    table.add_column("Status")
    table.add_column("Confidence", justify="right")
    table.add_column("Card")
    for s in scans:
        card = cards.get(s.resolved_card_ref)
        style = _status_style(s.status.value)
        table.add_row(
            s.id,
            s.created_at.strftime("%Y-%m-%d %H:%M") if s.created_at else "-",
            f"[{style}]{s.status.value}[/{style}]",
            f"{s.confidence:.0%}" if s.confidence is not None else "-",
            card.name if card else "-",
        )
    console.print(table)


def main():
    """Console script entry point."""
    app()
