"""CLI command implementations for LeaseScope."""

from __future__ import annotations

import asyncio
import logging
from ipaddress import AddressValueError, IPv4Address
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from leasescope.config import Settings, get_settings
from leasescope.core import index, parser
from leasescope.core.hwaddr import InvalidHardwareAddress, InvalidMacPrefix
from leasescope.core.index import IndexSnapshot
from leasescope.core.models import UNKNOWN, Diagnostic, Grammar, LeaseState, Record, ResolvedRecord
from leasescope.core.query import ListFilter, QueryService, StaticSource

console = Console()

_STATE_STYLE: dict[LeaseState | None, str] = {
    LeaseState.ACTIVE: "[bold green]active[/]",
    LeaseState.RESERVED: "[cyan]reserved[/]",
    LeaseState.EXPIRED: "[yellow]expired[/]",
    LeaseState.RELEASED: "[dim]released[/]",
    None: "[dim]host[/]",
}

_HOSTS_OPTION = typer.Option(None, "--hosts", help="dhcpd.conf with host declarations.")
_LEASES_OPTION = typer.Option(None, "--leases", help="dhcpd.leases lease log.")
_LOG_OPTION = typer.Option("WARNING", "--log-level", "-l", help="Logging level.")


def _setup_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _settings(hosts: Optional[Path], leases: Optional[Path], **overrides: object) -> Settings:
    return get_settings(
        hosts_path=str(hosts) if hosts else None,
        leases_path=str(leases) if leases else None,
        **overrides,
    )


def _sources(settings: Settings) -> list[tuple[Grammar, Path]]:
    found = [
        (grammar, path)
        for grammar, path in (
            (Grammar.HOSTS, settings.resolved_hosts_path),
            (Grammar.LEASES, settings.resolved_leases_path),
        )
        if path is not None
    ]
    if not found:
        console.print("[red]No source files configured.[/]")
        raise typer.Exit(1)
    return found


def _parse_sources(settings: Settings) -> tuple[list[Record], list[tuple[Path, Diagnostic]]]:
    """Parse every configured source once; an unreadable file aborts the command."""
    records: list[Record] = []
    diagnostics: list[tuple[Path, Diagnostic]] = []
    for grammar, path in _sources(settings):
        try:
            data = path.read_bytes()
        except OSError as exc:
            console.print(f"[red]Cannot read {path}: {exc.strerror or exc}[/]")
            raise typer.Exit(1)
        outcome = parser.parse(data, grammar)
        records.extend(outcome.records)
        diagnostics.extend((path, d) for d in outcome.diagnostics)
    return records, diagnostics


def _load_snapshot(settings: Settings) -> IndexSnapshot:
    records, diagnostics = _parse_sources(settings)
    if diagnostics:
        console.print(
            f"[yellow]Skipped {len(diagnostics)} malformed block(s); "
            f"run 'leasescope check' for details.[/]"
        )
    return index.build(records, version=1, diagnostics=[d for _, d in diagnostics])


def _query_service(settings: Settings) -> QueryService:
    from leasescope.main import build_query_service

    snapshot = _load_snapshot(settings)
    return asyncio.run(build_query_service(StaticSource(snapshot), settings))


def _fmt_time(value: object) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"  # type: ignore[attr-defined]


def _reachable(record: ResolvedRecord) -> str:
    if record.reachable == UNKNOWN:
        return "?"
    return "[green]up[/]" if record.reachable else "[red]down[/]"


def _build_record_table(records: list[ResolvedRecord], title: str = "DHCP Clients") -> Table:
    wide = console.width >= 110

    table = Table(
        title=title,
        show_lines=False,
        expand=True,
        padding=(0, 1),
        title_style="bold cyan",
        border_style="bright_black",
    )
    table.add_column("MAC", width=17, no_wrap=True, style="dim")
    table.add_column("IP Address", min_width=11, max_width=15, no_wrap=True)
    table.add_column("Name", no_wrap=True, ratio=2)
    table.add_column("State", width=8, no_wrap=True)
    if wide:
        table.add_column("Vendor", no_wrap=True, ratio=1)
        table.add_column("Ends", width=19, no_wrap=True)
    table.add_column("Up", width=4, no_wrap=True, justify="center")

    for record in records:
        row = [
            str(record.mac),
            str(record.address),
            record.display_name,
            _STATE_STYLE[record.lease_state],
        ]
        if wide:
            row.extend([record.vendor, _fmt_time(record.lease_end)])
        row.append(_reachable(record))
        table.add_row(*row, style="" if record.lease_state is not LeaseState.RELEASED else "dim")
    return table


def _print_record(record: ResolvedRecord) -> None:
    panel_text = (
        f"[bold]MAC:[/]          {record.mac}\n"
        f"[bold]Vendor:[/]       {record.vendor}\n"
        f"[bold]Address:[/]      {record.address}\n"
        f"[bold]Hostname:[/]     {record.hostname or 'N/A'}\n"
        f"[bold]Description:[/]  {record.description or 'N/A'}\n"
        f"[bold]Lease State:[/]  {record.lease_state.value if record.lease_state else 'N/A'}\n"
        f"[bold]Lease Start:[/]  {_fmt_time(record.lease_start)}\n"
        f"[bold]Lease End:[/]    {_fmt_time(record.lease_end)}\n"
        f"[bold]Last Seen:[/]    {_fmt_time(record.last_seen)}\n"
        f"[bold]Host Entry:[/]   {'Yes' if record.has_host else 'No'}\n"
        f"[bold]Reachable:[/]    {_reachable(record)}"
    )
    console.print(Panel(panel_text, title=record.display_name, border_style="cyan"))


def cmd_check(
    hosts: Optional[Path] = _HOSTS_OPTION,
    leases: Optional[Path] = _LEASES_OPTION,
    strict: bool = typer.Option(False, "--strict", help="Exit non-zero if any block was skipped."),
    log_level: str = _LOG_OPTION,
) -> None:
    """Parse the source files once and report malformed blocks."""
    _setup_logging(log_level)
    settings = _settings(hosts, leases)
    records, diagnostics = _parse_sources(settings)
    snapshot = index.build(records)

    console.print(
        f"Parsed [bold]{len(records)}[/] records into [bold]{len(snapshot)}[/] clients, "
        f"[bold]{len(diagnostics)}[/] diagnostics."
    )
    if not diagnostics:
        return

    table = Table(title="Skipped Blocks", title_style="bold yellow", border_style="bright_black", expand=True)
    table.add_column("File", no_wrap=True, style="dim")
    table.add_column("Line", justify="right", width=6)
    table.add_column("Col", justify="right", width=4)
    table.add_column("Problem", ratio=2)
    for path, diagnostic in diagnostics:
        table.add_row(path.name, str(diagnostic.line), str(diagnostic.column), diagnostic.message)
    console.print(table)
    if strict:
        raise typer.Exit(1)


def cmd_lookup(
    target: str = typer.Argument(help="Hardware address or IPv4 address."),
    hosts: Optional[Path] = _HOSTS_OPTION,
    leases: Optional[Path] = _LEASES_OPTION,
    enrich: bool = typer.Option(True, "--enrich/--no-enrich", help="Resolve vendor names."),
    log_level: str = _LOG_OPTION,
) -> None:
    """Show the merged record for one hardware or network address."""
    _setup_logging(log_level)
    settings = _settings(hosts, leases, enrich=enrich)
    query = _query_service(settings)

    try:
        ip: IPv4Address | None = IPv4Address(target)
    except AddressValueError:
        ip = None

    if ip is not None:
        records = asyncio.run(query.get_by_ip(ip))
    else:
        try:
            found = asyncio.run(query.get_by_mac(target))
        except InvalidHardwareAddress as exc:
            console.print(f"[red]{exc}[/]")
            raise typer.Exit(1)
        records = [found] if found else []

    if not records:
        console.print(f"[red]{target} not found.[/]")
        raise typer.Exit(1)
    for record in records:
        _print_record(record)


def cmd_devices(
    state: Optional[LeaseState] = typer.Option(None, "--state", help="Filter by lease state."),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Hardware address prefix, e.g. 00:1b:21."),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Hostname or description substring."),
    hosts: Optional[Path] = _HOSTS_OPTION,
    leases: Optional[Path] = _LEASES_OPTION,
    enrich: bool = typer.Option(False, "--enrich/--no-enrich", help="Resolve vendor names."),
    log_level: str = _LOG_OPTION,
) -> None:
    """List every known client, optionally filtered."""
    _setup_logging(log_level)
    settings = _settings(hosts, leases, enrich=enrich)
    query = _query_service(settings)

    try:
        flt = ListFilter(state=state, prefix=prefix, q=search)
        page = asyncio.run(query.list(flt, page_size=max(1, query.health().record_count)))
    except InvalidMacPrefix as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(1)

    if not page.items:
        console.print("[yellow]No matching clients.[/]")
        raise typer.Exit(0)

    console.print()
    console.print(_build_record_table(page.items))
    console.print(f"\n  [bold]{page.total}[/] clients.\n")


def cmd_vendors(
    hosts: Optional[Path] = _HOSTS_OPTION,
    leases: Optional[Path] = _LEASES_OPTION,
    log_level: str = _LOG_OPTION,
) -> None:
    """List the hardware vendors present on the network."""
    _setup_logging(log_level)
    settings = _settings(hosts, leases, enrich=True)
    query = _query_service(settings)
    names = asyncio.run(query.vendors())
    if not names:
        console.print("[yellow]No vendors resolved.[/]")
        raise typer.Exit(0)
    for name in names:
        console.print(f"  {name}")


def cmd_serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="API server bind host."),
    port: int = typer.Option(16768, "--port", "-p", help="API server bind port."),
    hosts: Optional[Path] = _HOSTS_OPTION,
    leases: Optional[Path] = _LEASES_OPTION,
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Watch the source files and serve the HTTP API."""
    from leasescope.main import run_server

    asyncio.run(
        run_server(
            host=host,
            port=port,
            hosts_path=str(hosts) if hosts else None,
            leases_path=str(leases) if leases else None,
            log_level=log_level,
        )
    )
