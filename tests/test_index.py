"""Tests for the nibble trie and snapshot build/merge policy."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from ipaddress import IPv4Address

import pytest

from leasescope.core import index
from leasescope.core.hwaddr import HardwareAddress
from leasescope.core.index import IndexSnapshot, NibbleTrie
from leasescope.core.models import HostRecord, LeaseRecord, LeaseState

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
MAC = "00:11:22:33:44:55"


def _host(mac: str = MAC, address: str = "192.0.2.10", **kw: object) -> HostRecord:
    return HostRecord(mac=mac, address=address, **kw)


def _lease(
    mac: str = MAC,
    address: str = "192.0.2.101",
    state: LeaseState | None = LeaseState.ACTIVE,
    starts: datetime | None = T0,
    **kw: object,
) -> LeaseRecord:
    return LeaseRecord(mac=mac, address=address, state=state, starts=starts, **kw)


class TestNibbleTrie:
    """Arena radix tree."""

    def test_insert_and_get(self) -> None:
        trie: NibbleTrie[str] = NibbleTrie()
        trie.insert((1, 2, 3, 4), "a")
        trie.insert((1, 2, 5, 6), "b")
        trie.insert((1, 2), "c")
        assert trie.get((1, 2, 3, 4)) == "a"
        assert trie.get((1, 2, 5, 6)) == "b"
        assert trie.get((1, 2)) == "c"
        assert trie.get((1,)) is None
        assert trie.get((1, 2, 3)) is None
        assert trie.get((9, 9, 9, 9)) is None
        assert len(trie) == 3

    def test_replacing_a_value_keeps_size(self) -> None:
        trie: NibbleTrie[str] = NibbleTrie()
        trie.insert((1, 2), "a")
        trie.insert((1, 2), "b")
        assert trie.get((1, 2)) == "b"
        assert len(trie) == 1

    def test_values_in_key_order(self) -> None:
        trie: NibbleTrie[int] = NibbleTrie()
        keys = [(0xA, 0), (0, 0xF), (0, 1, 2), (0, 1), (5,)]
        for i, key in enumerate(keys):
            trie.insert(key, i)
        # (0, 1) < (0, 1, 2) < (0, 15) < (5,) < (10, 0)
        assert list(trie.values()) == [3, 2, 1, 4, 0]

    def test_values_under_prefix(self) -> None:
        trie: NibbleTrie[str] = NibbleTrie()
        trie.insert((1, 2, 3), "a")
        trie.insert((1, 2, 4), "b")
        trie.insert((1, 3, 0), "c")
        assert list(trie.values((1, 2))) == ["a", "b"]
        # prefix ending part-way through a compressed edge
        assert list(trie.values((1, 3))) == ["c"]
        assert list(trie.values((2,))) == []

    def test_longest_prefix(self) -> None:
        trie: NibbleTrie[str] = NibbleTrie()
        trie.insert((0, 0, 1, 0xB, 2, 1), "oui")
        trie.insert((0, 0, 1, 0xB, 2, 1, 5, 0, 0), "/36")
        assert trie.longest_prefix((0, 0, 1, 0xB, 2, 1, 5, 0, 0, 7, 7, 7)) == "/36"
        assert trie.longest_prefix((0, 0, 1, 0xB, 2, 1, 4, 0, 0, 7, 7, 7)) == "oui"
        assert trie.longest_prefix((0, 0, 1, 0xB, 2, 2)) is None


class TestMergePolicy:
    """Host and lease records for the same hardware address."""

    def test_later_lease_wins_and_host_supplies_metadata(self) -> None:
        host = _host(hostname="printer", description="Office printer")
        older = _lease(address="192.0.2.101", starts=T0, client_hostname="old")
        newer = _lease(address="192.0.2.102", state=LeaseState.EXPIRED, starts=T0 + timedelta(hours=1))
        snapshot = index.build([newer, host, older])

        record = snapshot.lookup_by_mac(MAC)
        assert record is not None
        assert record.address == IPv4Address("192.0.2.102")
        assert record.lease_state is LeaseState.EXPIRED
        assert record.lease_start == T0 + timedelta(hours=1)
        assert record.hostname == "printer"
        assert record.description == "Office printer"
        assert record.has_host and record.has_lease

    def test_client_hostname_preferred_over_host_name(self) -> None:
        snapshot = index.build([_host(hostname="printer"), _lease(client_hostname="laptop")])
        assert snapshot.lookup_by_mac(MAC).hostname == "laptop"

    @pytest.mark.parametrize(
        ("first", "second", "expected"),
        [
            (LeaseState.EXPIRED, LeaseState.ACTIVE, LeaseState.ACTIVE),
            (LeaseState.ACTIVE, LeaseState.EXPIRED, LeaseState.ACTIVE),
            (LeaseState.RELEASED, LeaseState.RESERVED, LeaseState.RESERVED),
            (LeaseState.EXPIRED, LeaseState.RELEASED, LeaseState.EXPIRED),
        ],
    )
    def test_same_start_ties_broken_by_state(
        self, first: LeaseState, second: LeaseState, expected: LeaseState
    ) -> None:
        snapshot = index.build([_lease(state=first), _lease(state=second)])
        assert snapshot.lookup_by_mac(MAC).lease_state is expected

    def test_full_tie_goes_to_later_entry(self) -> None:
        a = _lease(address="192.0.2.1")
        b = _lease(address="192.0.2.2")
        assert index.build([a, b]).lookup_by_mac(MAC).address == IPv4Address("192.0.2.2")
        assert index.build([b, a]).lookup_by_mac(MAC).address == IPv4Address("192.0.2.1")

    def test_lease_without_start_loses(self) -> None:
        snapshot = index.build([_lease(address="192.0.2.1"), _lease(address="192.0.2.2", starts=None)])
        assert snapshot.lookup_by_mac(MAC).address == IPv4Address("192.0.2.1")

    def test_open_state_ranks_as_active(self) -> None:
        """A lease logged without a binding state keeps its open state in the snapshot."""
        open_lease = _lease(address="192.0.2.1", state=None, ends=T0 + timedelta(hours=1))
        expired = _lease(address="192.0.2.2", state=LeaseState.EXPIRED)
        for records in ([open_lease, expired], [expired, open_lease]):
            record = index.build(records).lookup_by_mac(MAC)
            assert record.address == IPv4Address("192.0.2.1")
            assert record.has_lease and record.lease_state is None

    def test_open_state_settled_against_the_clock(self) -> None:
        ends = T0 + timedelta(hours=1)
        record = index.build([_lease(state=None, ends=ends)]).lookup_by_mac(MAC)
        assert record.as_of(ends - timedelta(seconds=1)).lease_state is LeaseState.ACTIVE
        assert record.as_of(ends + timedelta(seconds=1)).lease_state is LeaseState.EXPIRED
        never = index.build([_lease(state=None, ends=None)]).lookup_by_mac(MAC)
        assert never.as_of(ends).lease_state is LeaseState.ACTIVE
        host_only = index.build([_host()]).lookup_by_mac(MAC)
        assert host_only.as_of(ends).lease_state is None

    def test_host_only_record_has_no_lease_fields(self) -> None:
        """Dropping the only lease leaves host metadata and no lease state."""
        snapshot = index.build([_host(hostname="printer")])
        record = snapshot.lookup_by_mac(MAC)
        assert record.address == IPv4Address("192.0.2.10")
        assert record.lease_state is None
        assert record.lease_start is None
        assert record.has_host and not record.has_lease

    def test_duplicate_host_later_wins(self) -> None:
        snapshot = index.build([_host(hostname="a"), _host(hostname="b")])
        assert snapshot.lookup_by_mac(MAC).hostname == "b"
        assert len(snapshot) == 1

    def test_resolve_requires_a_record(self) -> None:
        with pytest.raises(ValueError):
            index.resolve(None, None)


class TestSnapshotLookups:
    """Exact, reverse and prefix lookups on the sample files."""

    def test_every_inserted_address_is_found(self, snapshot: IndexSnapshot) -> None:
        expected = [
            "00:11:22:33:44:55",
            "00:1b:21:00:00:01",
            "00:1b:21:aa:bb:cc",
            "aa:bb:cc:00:00:01",
            "aa:bb:cc:00:00:02",
        ]
        assert [str(r.mac) for r in snapshot] == expected
        for mac in expected:
            record = snapshot.lookup_by_mac(mac.upper())
            assert record is not None
            assert str(record.mac) == mac

    def test_absent_address(self, snapshot: IndexSnapshot) -> None:
        assert snapshot.lookup_by_mac("de:ad:be:ef:00:00") is None

    def test_lease_example(self, snapshot: IndexSnapshot) -> None:
        record = snapshot.lookup_by_mac("00:11:22:33:44:55")
        assert record.address == IPv4Address("192.0.2.101")
        assert record.lease_state is LeaseState.ACTIVE
        assert record.description == "Office laser printer"
        assert record.vendor == "unknown"
        assert record.reachable == "unknown"

    def test_lookup_by_ip_uses_both_reverse_indices(self, snapshot: IndexSnapshot) -> None:
        by_lease = snapshot.lookup_by_ip("192.0.2.101")
        by_host = snapshot.lookup_by_ip(IPv4Address("192.0.2.10"))
        assert [str(r.mac) for r in by_lease] == ["00:11:22:33:44:55"]
        assert [str(r.mac) for r in by_host] == ["00:11:22:33:44:55"]
        assert snapshot.lookup_by_ip("198.51.100.1") == []

    def test_lookup_by_ip_shared_address(self) -> None:
        """Two clients that held the same address both come back, ordered by MAC."""
        snapshot = index.build(
            [
                _lease(mac="00:00:00:00:00:02", address="192.0.2.50"),
                _lease(mac="00:00:00:00:00:01", address="192.0.2.50"),
            ]
        )
        assert [str(r.mac) for r in snapshot.lookup_by_ip("192.0.2.50")] == [
            "00:00:00:00:00:01",
            "00:00:00:00:00:02",
        ]

    def test_prefix_query(self, snapshot: IndexSnapshot) -> None:
        assert [str(r.mac) for r in snapshot.prefix_query("00:1b:21")] == [
            "00:1b:21:00:00:01",
            "00:1b:21:aa:bb:cc",
        ]
        assert [str(r.mac) for r in snapshot.prefix_query("00:1b:21:a")] == ["00:1b:21:aa:bb:cc"]
        assert len(snapshot.prefix_query("")) == len(snapshot)
        assert snapshot.prefix_query("ff") == []

    def test_build_does_not_depend_on_input_after_return(self) -> None:
        records = [_lease()]
        snapshot = index.build(records, version=3)
        records.clear()
        assert snapshot.version == 3
        assert snapshot.lookup_by_mac(HardwareAddress.parse(MAC)) is not None
