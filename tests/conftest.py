"""Pytest fixtures for LeaseScope tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from leasescope.core import index, parser
from leasescope.core.index import IndexSnapshot

NOW = datetime(2024, 1, 2, 12, 0, 0, tzinfo=timezone.utc)

HOSTS_TEXT = """\
# dhcpd.conf
option domain-name "example.org";
default-lease-time 600;

subnet 192.0.2.0 netmask 255.255.255.0 {
  range 192.0.2.100 192.0.2.200;

  host printer {
    # Office laser printer
    hardware ethernet 00:11:22:33:44:55;
    fixed-address 192.0.2.10;
    option host-name "office-printer";
  }

  host nas {
    hardware ethernet 00:1B:21:AA:BB:CC;
    fixed-address 192.0.2.20;
  }
}

host "camera" {
  hardware ethernet 00:1b:21:00:00:01;
  fixed-address 192.0.2.30;
  ddns-hostname "cam-front";
}
"""

LEASES_TEXT = """\
# The format of this file is documented in the dhcpd.leases(5) manual page.
# This lease file was written by isc-dhcp-4.4.3

authoring-byte-order little-endian;

lease 192.0.2.101 {
  starts 1 2024/01/01 00:00:00;
  ends 1 2024/01/01 12:00:00;
  cltt 1 2024/01/01 00:00:00;
  binding state active;
  next binding state free;
  rewind binding state free;
  hardware ethernet 00:11:22:33:44:55;
  uid "\\001\\000\\021\\"3DU";
  set vendor-class-identifier = "MSFT 5.0";
  client-hostname "laptop";
}
lease 192.0.2.102 {
  starts 0 2023/12/31 00:00:00;
  ends 0 2023/12/31 12:00:00;
  binding state expired;
  hardware ethernet 00:11:22:33:44:55;
}
lease 192.0.2.150 {
  starts 2 2024/01/02 08:00:00;
  ends never;
  binding state active;
  hardware ethernet aa:bb:cc:00:00:01;
  client-hostname "phone";
}
lease 192.0.2.151 {
  starts 2 2024/01/02 09:00:00;
  ends 2 2024/01/02 10:00:00;
  binding state free;
  hardware ethernet aa:bb:cc:00:00:02;
}
"""


@pytest.fixture(autouse=True)
def _no_yaml_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's ~/.leasescope/config.yaml out of the tests."""
    monkeypatch.setattr("leasescope.config._load_yaml_config", lambda: {})


@pytest.fixture
def hosts_text() -> str:
    return HOSTS_TEXT


@pytest.fixture
def leases_text() -> str:
    return LEASES_TEXT


@pytest.fixture
def source_files(tmp_path: Path) -> tuple[Path, Path]:
    """Write the sample dhcpd.conf and dhcpd.leases into a temp dir."""
    hosts = tmp_path / "dhcpd.conf"
    leases = tmp_path / "dhcpd.leases"
    hosts.write_text(HOSTS_TEXT)
    leases.write_text(LEASES_TEXT)
    return hosts, leases


@pytest.fixture
def snapshot() -> IndexSnapshot:
    """An index built from both sample files."""
    hosts = parser.parse_hosts(HOSTS_TEXT)
    leases = parser.parse_leases(LEASES_TEXT)
    return index.build(
        [*hosts.records, *leases.records],
        version=1,
        diagnostics=[*hosts.diagnostics, *leases.diagnostics],
    )
