"""Immutable, versioned lookup index keyed by hardware address."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from ipaddress import IPv4Address
from typing import Any, Generic, Iterable, Iterator, TypeVar

from leasescope.core.hwaddr import HardwareAddress, MacPrefix
from leasescope.core.models import (
    Diagnostic,
    HostRecord,
    LeaseRecord,
    LeaseState,
    Record,
    ResolvedRecord,
)

logger = logging.getLogger(__name__)

V = TypeVar("V")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Compressed prefix tree over nibble sequences
# ---------------------------------------------------------------------------

class _Node:
    __slots__ = ("label", "children", "value", "has_value")

    def __init__(self, label: tuple[int, ...]) -> None:
        self.label = label  # nibbles on the edge leading into this node
        self.children: dict[int, int] = {}  # first nibble of child label -> arena index
        self.value: Any = None
        self.has_value = False


def _common_length(a: tuple[int, ...], b: tuple[int, ...]) -> int:
    n = min(len(a), len(b))
    i = 0
    while i < n and a[i] == b[i]:
        i += 1
    return i


class NibbleTrie(Generic[V]):
    """Radix tree whose nodes live in a flat list and refer to each other by index.

    Keys are nibble tuples (12 for a full MAC address, fewer for a prefix).
    Edges are path-compressed, so a lookup touches one node per branching
    point rather than one per nibble.
    """

    def __init__(self) -> None:
        self._nodes: list[_Node] = [_Node(())]
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def _alloc(self, label: tuple[int, ...]) -> int:
        self._nodes.append(_Node(label))
        return len(self._nodes) - 1

    def insert(self, key: tuple[int, ...], value: V) -> None:
        nodes = self._nodes
        idx, pos = 0, 0
        while True:
            node = nodes[idx]
            if pos == len(key):
                if not node.has_value:
                    self._size += 1
                node.value, node.has_value = value, True
                return

            child_idx = node.children.get(key[pos])
            if child_idx is None:
                leaf = self._alloc(key[pos:])
                nodes[leaf].value, nodes[leaf].has_value = value, True
                node.children[key[pos]] = leaf
                self._size += 1
                return

            child = nodes[child_idx]
            common = _common_length(child.label, key[pos:])
            if common < len(child.label):
                # split the edge so the shared part becomes its own node
                mid = self._alloc(child.label[:common])
                nodes[mid].children[child.label[common]] = child_idx
                child.label = child.label[common:]
                node.children[key[pos]] = mid
                child_idx = mid
            idx, pos = child_idx, pos + common

    def _descend(self, key: tuple[int, ...]) -> int | None:
        """Index of the node whose subtree holds exactly the keys starting with ``key``."""
        nodes = self._nodes
        idx, pos = 0, 0
        while pos < len(key):
            child_idx = nodes[idx].children.get(key[pos])
            if child_idx is None:
                return None
            label = nodes[child_idx].label
            rest = key[pos:pos + len(label)]
            if label[:len(rest)] != rest:
                return None
            idx, pos = child_idx, pos + len(label)
        return idx

    def get(self, key: tuple[int, ...]) -> V | None:
        nodes = self._nodes
        idx, pos = 0, 0
        while pos < len(key):
            child_idx = nodes[idx].children.get(key[pos])
            if child_idx is None:
                return None
            label = nodes[child_idx].label
            if key[pos:pos + len(label)] != label:
                return None
            idx, pos = child_idx, pos + len(label)
        node = nodes[idx]
        return node.value if node.has_value else None

    def longest_prefix(self, key: tuple[int, ...]) -> V | None:
        """Value stored at the longest stored key that is a prefix of ``key``."""
        nodes = self._nodes
        idx, pos = 0, 0
        best: V | None = nodes[0].value if nodes[0].has_value else None
        while pos < len(key):
            child_idx = nodes[idx].children.get(key[pos])
            if child_idx is None:
                break
            label = nodes[child_idx].label
            if key[pos:pos + len(label)] != label:
                break
            idx, pos = child_idx, pos + len(label)
            if nodes[idx].has_value:
                best = nodes[idx].value
        return best

    def values(self, prefix: tuple[int, ...] = ()) -> Iterator[V]:
        """Values under ``prefix`` in ascending key order."""
        start = self._descend(prefix)
        if start is None:
            return
        nodes = self._nodes
        stack = [start]
        while stack:
            node = nodes[stack.pop()]
            if node.has_value:
                yield node.value
            # reversed so the smallest nibble is popped first
            stack.extend(node.children[n] for n in sorted(node.children, reverse=True))


# ---------------------------------------------------------------------------
# Merge policy
# ---------------------------------------------------------------------------

def _lease_rank(lease: LeaseRecord) -> tuple[datetime, int, datetime]:
    # no binding state ranks as active
    state = lease.state or LeaseState.ACTIVE
    return (lease.starts or _EPOCH, state.priority, lease.ends or _EPOCH)


def resolve(host: HostRecord | None, lease: LeaseRecord | None) -> ResolvedRecord:
    """Merge a host mapping with its authoritative lease.

    The lease supplies address, state and timing; the host supplies the
    description and is the fallback for the hostname.
    """
    if host is None and lease is None:
        raise ValueError("need a host record, a lease record, or both")

    if lease is None:
        assert host is not None
        return ResolvedRecord(
            mac=host.mac,
            address=host.address,
            hostname=host.hostname,
            description=host.description,
            has_host=True,
        )

    return ResolvedRecord(
        mac=lease.mac,
        address=lease.address,
        hostname=lease.client_hostname or (host.hostname if host else None),
        description=host.description if host else None,
        lease_state=lease.state,
        lease_start=lease.starts,
        lease_end=lease.ends,
        last_seen=lease.last_seen,
        has_host=host is not None,
        has_lease=True,
    )


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class IndexSnapshot:
    """One fully built index version. Never modified after :func:`build` returns."""

    __slots__ = ("version", "built_at", "diagnostics", "_trie", "_by_host_address", "_by_lease_address")

    def __init__(
        self,
        version: int,
        trie: NibbleTrie[ResolvedRecord],
        by_host_address: dict[IPv4Address, tuple[HardwareAddress, ...]],
        by_lease_address: dict[IPv4Address, tuple[HardwareAddress, ...]],
        diagnostics: tuple[Diagnostic, ...] = (),
        built_at: datetime | None = None,
    ) -> None:
        self.version = version
        self.built_at = built_at or datetime.now(timezone.utc)
        self.diagnostics = diagnostics
        self._trie = trie
        self._by_host_address = by_host_address
        self._by_lease_address = by_lease_address

    def __len__(self) -> int:
        return len(self._trie)

    def __iter__(self) -> Iterator[ResolvedRecord]:
        return self._trie.values()

    def __repr__(self) -> str:
        return f"IndexSnapshot(version={self.version}, records={len(self)})"

    def lookup_by_mac(self, address: HardwareAddress | str) -> ResolvedRecord | None:
        return self._trie.get(HardwareAddress.parse(address).nibbles())

    def lookup_by_ip(self, address: IPv4Address | str) -> list[ResolvedRecord]:
        """Records whose lease or fixed host address is ``address``, ordered by MAC."""
        ip = IPv4Address(address)
        macs = set(self._by_lease_address.get(ip, ())) | set(self._by_host_address.get(ip, ()))
        found = (self._trie.get(mac.nibbles()) for mac in sorted(macs))
        return [record for record in found if record is not None]

    def prefix_query(self, prefix: MacPrefix | str) -> list[ResolvedRecord]:
        """All records whose hardware address starts with ``prefix``, ordered by MAC."""
        return list(self._trie.values(MacPrefix.parse(prefix).nibbles))


def build(
    records: Iterable[Record],
    *,
    version: int = 0,
    diagnostics: Iterable[Diagnostic] = (),
) -> IndexSnapshot:
    """Build a snapshot from parsed records. Pure: the inputs are not modified."""
    hosts: dict[HardwareAddress, HostRecord] = {}
    leases: dict[HardwareAddress, LeaseRecord] = {}

    for record in records:
        if isinstance(record, HostRecord):
            if record.mac in hosts:
                logger.debug("Duplicate host declaration for %s; keeping the later one", record.mac)
            hosts[record.mac] = record
        else:
            current = leases.get(record.mac)
            # >= so that on a full tie the entry written later in the log wins
            if current is None or _lease_rank(record) >= _lease_rank(current):
                leases[record.mac] = record

    trie: NibbleTrie[ResolvedRecord] = NibbleTrie()
    by_host: dict[IPv4Address, list[HardwareAddress]] = {}
    by_lease: dict[IPv4Address, list[HardwareAddress]] = {}

    for mac in sorted(hosts.keys() | leases.keys()):
        host = hosts.get(mac)
        lease = leases.get(mac)
        trie.insert(mac.nibbles(), resolve(host, lease))
        if host is not None:
            by_host.setdefault(host.address, []).append(mac)
        if lease is not None:
            by_lease.setdefault(lease.address, []).append(mac)

    return IndexSnapshot(
        version=version,
        trie=trie,
        by_host_address={ip: tuple(macs) for ip, macs in by_host.items()},
        by_lease_address={ip: tuple(macs) for ip, macs in by_lease.items()},
        diagnostics=tuple(diagnostics),
    )
