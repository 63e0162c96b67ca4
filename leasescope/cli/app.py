"""Typer CLI application for LeaseScope."""

from __future__ import annotations

import typer

from leasescope.cli.commands import (
    cmd_check,
    cmd_devices,
    cmd_lookup,
    cmd_serve,
    cmd_vendors,
)

app = typer.Typer(
    name="leasescope",
    help="LeaseScope: live view of ISC dhcpd host mappings and leases.",
    no_args_is_help=True,
    add_completion=False,
)

app.command("serve", help="Watch the dhcpd files and serve the HTTP API.")(cmd_serve)
app.command("check", help="Parse the dhcpd files once and report malformed blocks.")(cmd_check)
app.command("lookup", help="Show the record for a hardware or IPv4 address.")(cmd_lookup)
app.command("devices", help="List all clients from the dhcpd files.")(cmd_devices)
app.command("vendors", help="List hardware vendors seen in the dhcpd files.")(cmd_vendors)


if __name__ == "__main__":
    app()
