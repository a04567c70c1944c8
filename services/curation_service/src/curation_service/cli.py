"""
Command-line interface for judgment curation and reconciliation.

Usage:
    multas db init                              # Create tables
    multas articles seed --file articles.json   # Seed the article catalog
    multas curation status                      # Store vs judgments file
    multas curation maintain                    # Load judgments file, then backfill offenses
    multas curation describe > batch.txt        # Suggestions for unjudged descriptions
    multas curation describe --ingest batch.txt # Save the curated batch
    multas curation geocode                     # Propose points for unjudged locations
    multas curation accept 6 "AV ITALIA Y COMERCIO" --lat -34.88 --lng -56.15
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from multas_core.db.base import Base
from multas_core.db.enums import ConfidenceTier, GeocodingMethod
from multas_core.db.session import SessionLocal, engine
from multas_core.errors import MultasError
from multas_core.export import ArticleRecord
from multas_core.jurisdictions import jurisdiction_name
from multas_core.logging_config import configure_logging
from multas_core.store import JudgmentStore

from curation_service.classify.classifier import DescriptionClassifier
from curation_service.classify.exchange import ingest_exchange, parse_exchange, render_block, render_exchange
from curation_service.clustering import location_clusters
from curation_service.geocode import LocationResolver, ResolveStatus, build_providers
from curation_service.queue import description_progress, description_queue, location_progress, location_queue
from curation_service.reconcile import BackfillReport, LoadAction, ReconciliationController
from curation_service.settings import settings

app = typer.Typer(name="multas", help="Traffic-infraction enrichment: curation, reconciliation, backfill.")
db_app = typer.Typer(help="Database schema.")
articles_app = typer.Typer(help="Article catalog.")
curation_app = typer.Typer(help="Judgment curation and reconciliation.")
app.add_typer(db_app, name="db")
app.add_typer(articles_app, name="articles")
app.add_typer(curation_app, name="curation")

console = Console()
err_console = Console(stderr=True)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging.")) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO)


def _fail(exc: Exception) -> None:
    err_console.print(f"[red]error:[/red] {exc}")
    raise typer.Exit(code=1)


def _print_backfill(report: BackfillReport) -> None:
    table = Table(title="Backfill", show_header=True, header_style="bold cyan")
    table.add_column("")
    table.add_column("Updated", justify="right")
    table.add_column("Unjudged (rows / distinct)", justify="right")
    table.add_column("Judged, not applied (rows / distinct)", justify="right")
    table.add_row(
        "Locations",
        str(report.locations_updated),
        f"{report.locations_unjudged.records} / {report.locations_unjudged.distinct}",
        f"{report.locations_unapplied.records} / {report.locations_unapplied.distinct}",
    )
    table.add_row(
        "Descriptions",
        str(report.descriptions_updated),
        f"{report.descriptions_unjudged.records} / {report.descriptions_unjudged.distinct}",
        f"{report.descriptions_unapplied.records} / {report.descriptions_unapplied.distinct}",
    )
    console.print(table)


@db_app.command("init")
def db_init() -> None:
    """Create all tables that do not exist yet."""
    if engine.url.get_backend_name() == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(engine)
    console.print(f"[green]✓ schema ready[/green] ({engine.url.render_as_string(hide_password=True)})")


@articles_app.command("seed")
def articles_seed(
    file: Path = typer.Option(settings.articles_file, "--file", "-f", help="JSON list of {id, code, title, text}."),
) -> None:
    """Insert catalog articles missing from the store; existing ids are left untouched."""
    records = [ArticleRecord.model_validate(item) for item in json.loads(file.read_text(encoding="utf-8"))]
    with SessionLocal() as session:
        created = JudgmentStore(session).seed_articles(records)
        session.commit()
    console.print(f"seeded {created} of {len(records)} articles")


@articles_app.command("add")
def articles_add(
    article_id: str,
    code: int = typer.Option(..., help="Group code."),
    text: str = typer.Option(..., help="Normative text."),
    title: str = typer.Option("", help="Short title."),
) -> None:
    """Add or update one article."""
    with SessionLocal() as session:
        JudgmentStore(session).add_article(article_id, code=code, text=text, title=title)
        session.commit()
    console.print(f"saved article {article_id}")


@articles_app.command("search")
def articles_search(query: str, limit: int = typer.Option(20, "--limit", "-n")) -> None:
    with SessionLocal() as session:
        hits = JudgmentStore(session).search_articles(query, limit=limit)
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Id")
        table.add_column("Code", justify="right")
        table.add_column("Text")
        for a in hits:
            table.add_row(a.id, str(a.code), a.text)
    console.print(table)


@curation_app.command("status")
def curation_status() -> None:
    """Compare store and judgments file counts, plus curation progress."""
    with SessionLocal() as session:
        try:
            report = ReconciliationController(session).status()
        except MultasError as exc:
            _fail(exc)
        locs = location_progress(session)
        descs = description_progress(session)

    table = Table(title=f"Judgments ({report.state.value})", show_header=True, header_style="bold cyan")
    table.add_column("Kind")
    table.add_column("Store", justify="right")
    table.add_column("File", justify="right")
    for kind, n in report.live.items():
        table.add_row(kind, str(n), "-" if report.exported is None else str(report.exported.get(kind, 0)))
    console.print(table)
    console.print(f"locations judged:    {locs.judged}/{locs.total} ({locs.percent:.1f}%)")
    console.print(f"descriptions judged: {descs.judged}/{descs.total} ({descs.percent:.1f}%)")


@curation_app.command("load")
def curation_load() -> None:
    """Reload the store from the judgments file when the file is ahead."""
    with SessionLocal() as session:
        try:
            result = ReconciliationController(session).load()
        except MultasError as exc:
            _fail(exc)
    if result.action is LoadAction.replaced:
        console.print(f"[green]reloaded[/green] {result.exported}")
    else:
        console.print("store already up to date")


@curation_app.command("store")
def curation_store() -> None:
    """Export every judgment to the judgments file."""
    with SessionLocal() as session:
        doc = ReconciliationController(session).store()
    console.print(f"[green]exported[/green] {doc.counts()} to {settings.judgments_file}")


@curation_app.command("backfill")
def curation_backfill(
    batch_size: int = typer.Option(settings.backfill_batch_size, "--batch-size", "-b", help="Rows per commit."),
) -> None:
    """Project judgments onto offense records that still miss enrichment."""
    with SessionLocal() as session:
        report = ReconciliationController(session).backfill(batch_size=batch_size)
    _print_backfill(report)


@curation_app.command("maintain")
def curation_maintain(
    batch_size: int = typer.Option(settings.backfill_batch_size, "--batch-size", "-b", help="Rows per commit."),
) -> None:
    """Load the judgments file, then backfill. Stops before backfill if the load is refused."""
    with SessionLocal() as session:
        try:
            result, report = ReconciliationController(session).maintain(batch_size=batch_size)
        except MultasError as exc:
            _fail(exc)
    console.print(f"load: {result.action.value}")
    _print_backfill(report)


@curation_app.command("queue")
def curation_queue(
    kind: str = typer.Option("locations", "--kind", "-k", help="'locations' or 'descriptions'."),
    jurisdiction: Optional[int] = typer.Option(None, "--jurisdiction", "-j"),
    limit: int = typer.Option(50, "--limit", "-n"),
) -> None:
    """Unjudged items by number of affected offenses."""
    table = Table(show_header=True, header_style="bold cyan")
    with SessionLocal() as session:
        if kind == "locations":
            table.add_column("Jurisdiction")
            table.add_column("Location")
            table.add_column("Offenses", justify="right")
            for item in location_queue(session, jurisdiction, limit=limit):
                table.add_row(jurisdiction_name(item.jurisdiction_id), item.location, str(item.offenses))
        elif kind == "descriptions":
            table.add_column("Description")
            table.add_column("Offenses", justify="right")
            for item in description_queue(session, limit=limit):
                table.add_row(item.description, str(item.offenses))
        else:
            _fail(ValueError(f"unknown queue kind {kind!r}"))
    console.print(table)


@curation_app.command("describe")
def curation_describe(
    threshold: float = typer.Option(settings.classifier_threshold, "--threshold", "-t", help="Minimum similarity."),
    multi: bool = typer.Option(False, "--multi", help="Only composite (comma-separated) descriptions."),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Classify lines typed on stdin."),
    ingest: Optional[Path] = typer.Option(None, "--ingest", help="Curated batch file to save ('-' for stdin)."),
    limit: int = typer.Option(10000, "--limit", "-n"),
) -> None:
    """
    Description curation in the batch exchange format.

    Without options, prints suggestions for unjudged descriptions. Edit the
    output (keep correct article lines, delete the rest) and feed it back
    with --ingest.
    """
    with SessionLocal() as session:
        if ingest is not None:
            lines = sys.stdin.read().splitlines() if str(ingest) == "-" else ingest.read_text(encoding="utf-8").splitlines()
            report = ingest_exchange(parse_exchange(lines), JudgmentStore(session))
            session.commit()
            for description, error in report.errors:
                err_console.print(f"[red]error[/red] {description!r}: {error}")
            console.print(
                f"saved {len(report.saved)}, already judged {len(report.skipped_judged)}, "
                f"without articles {len(report.skipped_empty)}, errors {len(report.errors)}"
            )
            return

        classifier = DescriptionClassifier.from_session(session)
        if interactive:
            console.print("Type a description per line; 'exit' to stop.")
            for line in sys.stdin:
                line = line.strip()
                if line in ("exit", "quit"):
                    break
                block = render_block(classifier, line, threshold)
                typer.echo("\n".join(block) if block else "No suggestions found.")
                typer.echo("")
            return

        queue = [item.description for item in description_queue(session, limit=limit)]
        for line in render_exchange(queue, classifier, threshold, multi=multi):
            typer.echo(line)


@curation_app.command("geocode")
def curation_geocode(
    jurisdiction: Optional[int] = typer.Option(None, "--jurisdiction", "-j"),
    limit: int = typer.Option(50, "--limit", "-n"),
) -> None:
    """Propose points for the most frequent unjudged locations. Nothing is saved."""
    providers = build_providers()
    table = Table(title="Location proposals", show_header=True, header_style="bold cyan")
    for col in ("Jurisdiction", "Location", "Offenses", "Status", "Point", "Tier", "Source / reason"):
        table.add_column(col)
    with SessionLocal() as session:
        resolver = LocationResolver.from_session(session, providers)
        for item in location_queue(session, jurisdiction, limit=limit):
            outcome = resolver.resolve_detailed(item.jurisdiction_id, item.location)
            res = outcome.resolution
            table.add_row(
                jurisdiction_name(item.jurisdiction_id),
                item.location,
                str(item.offenses),
                outcome.status.value,
                f"{res.lat:.6f}, {res.lng:.6f}" if res else "",
                res.tier.value if res else "",
                res.source if res else (outcome.reason or ""),
            )
    console.print(table)


@curation_app.command("accept")
def curation_accept(
    jurisdiction: int,
    location: str,
    lat: Optional[float] = typer.Option(None, help="Latitude; omit to accept the resolver's proposal."),
    lng: Optional[float] = typer.Option(None, help="Longitude; omit to accept the resolver's proposal."),
    method: GeocodingMethod = typer.Option(GeocodingMethod.manual_input, help="How the point was obtained."),
    confidence: ConfidenceTier = typer.Option(ConfidenceTier.exact),
    electronic: bool = typer.Option(False, "--electronic", help="Fixed electronic enforcement."),
    notes: Optional[str] = typer.Option(None),
) -> None:
    """Record a location judgment."""
    with SessionLocal() as session:
        if lat is None or lng is None:
            outcome = LocationResolver.from_session(session, build_providers()).resolve_detailed(jurisdiction, location)
            if outcome.status is not ResolveStatus.resolved:
                _fail(ValueError(f"no usable proposal ({outcome.status.value}): {outcome.reason}"))
            res = outcome.resolution
            lat, lng = res.lat, res.lng
            method, confidence, electronic = res.method, res.tier, res.is_electronic
            notes = notes or res.notes
        try:
            JudgmentStore(session).save_location(
                jurisdiction,
                location,
                lat=lat,
                lng=lng,
                is_electronic=electronic,
                method=method,
                confidence=confidence,
                notes=notes,
            )
        except (MultasError, ValueError) as exc:
            _fail(exc)
        session.commit()
    console.print(f"[green]saved[/green] [{jurisdiction}] {location} -> ({lat:.6f}, {lng:.6f})")


@curation_app.command("merge")
def curation_merge(jurisdiction: int, target: str, canonical: str) -> None:
    """Make TARGET an alias of CANONICAL (copies its point)."""
    with SessionLocal() as session:
        try:
            row = JudgmentStore(session).merge_locations(jurisdiction, target, canonical)
        except (MultasError, ValueError) as exc:
            _fail(exc)
        session.commit()
        console.print(f"[green]merged[/green] {target!r} -> {row.canonical_location!r}")


@curation_app.command("clusters")
def curation_clusters(
    jurisdiction: Optional[int] = typer.Option(None, "--jurisdiction", "-j"),
    distance_m: float = typer.Option(settings.cluster_distance_m, "--distance", "-d", help="Meters."),
) -> None:
    """Judged locations close enough to be the same place."""
    with SessionLocal() as session:
        clusters = location_clusters(session, jurisdiction, distance_m=distance_m)
    for cluster in clusters:
        table = Table(
            title=f"{cluster.jurisdiction}: {cluster.principal.location} ({cluster.total_offenses} offenses)",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Location")
        table.add_column("Offenses", justify="right")
        table.add_column("Distance (m)", justify="right")
        table.add_column("Canonical")
        for m in cluster.members:
            name = f"[bold]{m.location}[/bold]" if m.is_principal else m.location
            table.add_row(name, str(m.offenses), f"{m.distance_m:.1f}", m.canonical_location or "")
        console.print(table)
    if not clusters:
        console.print("no merge candidates")


if __name__ == "__main__":
    app()
