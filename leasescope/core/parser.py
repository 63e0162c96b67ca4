"""Tolerant parsers for ISC dhcpd host declarations and lease logs.

Parsing runs in three passes over the decoded text:

1. comments are blanked out (and, in a second copy, quoted strings too) so
   that byte offsets stay aligned with the original input;
2. a locator scans the masked copy for ``host ... { }`` / ``lease ... { }``
   blocks, wherever they are nested;
3. each located block is parsed on its own by a strict grammar. A block that
   fails becomes a :class:`Diagnostic`; its neighbours are unaffected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from ipaddress import IPv4Address
from typing import Any, Callable, NamedTuple, Sequence

import pyparsing as pp

from leasescope.core.hwaddr import HardwareAddress, InvalidHardwareAddress
from leasescope.core.models import (
    Diagnostic,
    Grammar,
    HostRecord,
    LeaseRecord,
    LeaseState,
    Record,
)

logger = logging.getLogger(__name__)

_IDENT_CHARS = pp.alphanums + "_-"

# ISC binding-state vocabulary folded onto the four lease states
BINDING_STATES: dict[str, LeaseState] = {
    "active": LeaseState.ACTIVE,
    "backup": LeaseState.RESERVED,
    "free": LeaseState.EXPIRED,
    "expired": LeaseState.EXPIRED,
    "abandoned": LeaseState.EXPIRED,
    "reset": LeaseState.EXPIRED,
    "released": LeaseState.RELEASED,
}


class ParseOutcome(NamedTuple):
    records: list[Record]
    diagnostics: list[Diagnostic]


@dataclass(frozen=True)
class _Field:
    key: str
    value: Any


class _Incomplete(Exception):
    """A block parsed cleanly but lacks something a record needs."""


def _kw(word: str) -> pp.Keyword:
    return pp.Keyword(word, ident_chars=_IDENT_CHARS)


# ---------------------------------------------------------------------------
# Lexical pieces shared by both grammars
# ---------------------------------------------------------------------------

SEMI, LBRACE, RBRACE = map(pp.Suppress, ";{}")
_COMMENT = pp.Regex(r"#[^\n]*")
_QUOTED_RAW = pp.QuotedString('"', esc_char="\\", unquote_results=False)
_BARE = pp.Regex(r'[^\s;{}"]+')
_WORD = pp.Word(_IDENT_CHARS)
_LABEL = pp.Word(_IDENT_CHARS + ".")

_ESCAPES = {
    "a": "\x07", "b": "\x08", "t": "\t", "n": "\n",
    "v": "\x0b", "f": "\x0c", "r": "\r", "e": "\x1b",
}
_ESCAPE_RE = re.compile(r"\\([0-7]{3}|.)", re.DOTALL)


def _unescape(raw: str) -> str:
    """Decode a dhcpd string literal body, including ``\\NNN`` octal escapes."""

    def _sub(match: re.Match[str]) -> str:
        esc = match.group(1)
        if len(esc) == 3:
            return chr(int(esc, 8) & 0xFF)
        return _ESCAPES.get(esc, esc)

    return _ESCAPE_RE.sub(_sub, raw)


_STRING = _QUOTED_RAW.copy().set_parse_action(lambda t: _unescape(t[0][1:-1]))


def _to_ipv4(s: str, loc: int, toks: pp.ParseResults) -> IPv4Address:
    try:
        return IPv4Address(toks[0])
    except ValueError as exc:
        raise pp.ParseFatalException(s, loc, f"invalid IPv4 address {toks[0]!r}") from exc


def _to_mac(s: str, loc: int, toks: pp.ParseResults) -> HardwareAddress:
    try:
        return HardwareAddress.parse(toks[0])
    except InvalidHardwareAddress as exc:
        raise pp.ParseFatalException(s, loc, str(exc)) from exc


_IPV4 = pp.Regex(r"\d{1,3}(?:\.\d{1,3}){3}(?![\w.])").set_name("IPv4 address")
_IPV4.set_parse_action(_to_ipv4)

_MAC = pp.Regex(r"[0-9a-fA-F]{1,2}(?::[0-9a-fA-F]{1,2}){5}(?![0-9a-fA-F:])").set_name("MAC address")
_MAC.set_parse_action(_to_mac)

_NESTED = pp.nested_expr("{", "}", ignore_expr=_QUOTED_RAW)

# anything we do not model: ``keyword tokens... ;`` or ``keyword ... { ... }``
_UNKNOWN = (~RBRACE + pp.OneOrMore(_QUOTED_RAW | _BARE) + (SEMI | _NESTED)).suppress()


def _stamp_to_datetime(s: str, loc: int, toks: pp.ParseResults) -> datetime:
    try:
        stamp = datetime.strptime(f"{toks['date']} {toks['time']}", "%Y/%m/%d %H:%M:%S")
    except ValueError as exc:
        raise pp.ParseFatalException(s, loc, f"invalid timestamp: {exc}") from exc
    return stamp.replace(tzinfo=timezone.utc)


def _epoch_to_datetime(s: str, loc: int, toks: pp.ParseResults) -> datetime:
    try:
        return datetime.fromtimestamp(int(toks[1]), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise pp.ParseFatalException(s, loc, f"invalid epoch timestamp {toks[1]!r}") from exc


# starts 2 2024/01/02 03:04:05;   starts epoch 1704164645;   ends never;
_WEEKDAY_STAMP = pp.Regex(
    r"[0-6]\s+(?P<date>\d{4}/\d{1,2}/\d{1,2})\s+(?P<time>\d{1,2}:\d{1,2}:\d{1,2})"
).set_parse_action(_stamp_to_datetime)
_EPOCH_STAMP = (_kw("epoch") + pp.Word(pp.nums)).set_parse_action(_epoch_to_datetime)
_NEVER = _kw("never")
_TIMESTAMP = (_WEEKDAY_STAMP | _EPOCH_STAMP | _NEVER).set_name("timestamp")


def _field(key: str | Callable[[pp.ParseResults], str], index: int = 1) -> Callable[..., _Field]:
    def action(toks: pp.ParseResults) -> _Field:
        name = key(toks) if callable(key) else key
        return _Field(name, toks[index])

    return action


def _check_hardware(s: str, loc: int, toks: pp.ParseResults) -> _Field:
    if toks["htype"].lower() != "ethernet":
        raise pp.ParseFatalException(s, loc, f"unsupported hardware type {toks['htype']!r}")
    return _Field("hardware", toks["mac"])


_HARDWARE = (_kw("hardware") - _WORD("htype") + _MAC("mac") + SEMI).set_parse_action(_check_hardware)

# ---------------------------------------------------------------------------
# Lease log grammar (flat blocks)
# ---------------------------------------------------------------------------

_TIME_STMT = (
    pp.one_of("starts ends tstp tsfp atsfp cltt", as_keyword=True) - _TIMESTAMP + SEMI
).set_parse_action(lambda t: _Field(t[0], None if t[1] == "never" else t[1]))

_BINDING_STMT = (
    pp.Opt(pp.one_of("next rewind", as_keyword=True)("prefix"))
    + _kw("binding")
    - _kw("state")
    + _WORD("state")
    + SEMI
).set_parse_action(
    lambda t: _Field(f"{t['prefix']}-binding" if t.get("prefix") else "binding", t["state"])
)

_RESERVED_STMT = (_kw("reserved") + SEMI).set_parse_action(lambda: _Field("reserved", True))
_UID_STMT = (_kw("uid") - (_STRING | pp.Regex(r"[0-9a-fA-F:]+")) + SEMI).set_parse_action(_field("uid"))
_CLIENT_HOSTNAME_STMT = (_kw("client-hostname") - _STRING + SEMI).set_parse_action(
    _field("client-hostname")
)
_SET_STMT = (
    _kw("set") - _WORD("name") + pp.Suppress("=") + (_STRING | pp.Regex(r"[^;]+")) + SEMI
).set_parse_action(_field(lambda t: f"set:{t['name']}", index=2))

_LEASE_STATEMENT = (
    _TIME_STMT
    | _HARDWARE
    | _BINDING_STMT
    | _RESERVED_STMT
    | _UID_STMT
    | _CLIENT_HOSTNAME_STMT
    | _SET_STMT
    | _UNKNOWN
)

LEASE_BLOCK = (
    _kw("lease") - _IPV4("address") + LBRACE + pp.Group(pp.ZeroOrMore(_LEASE_STATEMENT))("fields") + RBRACE
)

# ---------------------------------------------------------------------------
# Host declaration grammar (nested blocks)
# ---------------------------------------------------------------------------

_FIXED_ADDRESS_STMT = (
    _kw("fixed-address") - pp.Group(pp.DelimitedList(_IPV4 | _LABEL)) + SEMI
).set_parse_action(lambda t: _Field("fixed-address", list(t[1])))

_OPTION_STMT = (
    _kw("option") - _WORD("name") + pp.Group(pp.OneOrMore(_STRING | _BARE))("value") + SEMI
).set_parse_action(lambda t: _Field(f"option:{t['name']}", " ".join(str(v) for v in t["value"])))

_DDNS_HOSTNAME_STMT = (_kw("ddns-hostname") - (_STRING | _LABEL) + SEMI).set_parse_action(
    _field("ddns-hostname")
)

_HOST_STATEMENT = _HARDWARE | _FIXED_ADDRESS_STMT | _OPTION_STMT | _DDNS_HOSTNAME_STMT | _UNKNOWN

HOST_BLOCK = (
    _kw("host") - (_STRING | _LABEL)("label") + LBRACE + pp.Group(pp.ZeroOrMore(_HOST_STATEMENT))("fields") + RBRACE
)

# offsets must line up with the original text, so tabs are kept as-is
for _expr in (LEASE_BLOCK, HOST_BLOCK):
    _expr.parse_with_tabs()

# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def _collect(fields: pp.ParseResults) -> dict[str, Any]:
    # later statements override earlier ones, as dhcpd itself does
    return {f.key: f.value for f in fields if isinstance(f, _Field)}


def _build_lease(toks: pp.ParseResults) -> LeaseRecord:
    values = _collect(toks["fields"])
    mac = values.get("hardware")
    if mac is None:
        raise _Incomplete("lease has no hardware ethernet address")

    ends = values.get("ends")
    binding = values.get("binding")
    if binding is not None:
        state = BINDING_STATES.get(binding.lower())
        if state is None:
            raise _Incomplete(f"unknown binding state {binding!r}")
    elif values.get("reserved"):
        state = LeaseState.RESERVED
    else:
        # judged against ends when the record is served
        state = None

    return LeaseRecord(
        mac=mac,
        address=toks["address"],
        state=state,
        starts=values.get("starts"),
        ends=ends,
        last_seen=values.get("cltt"),
        tstp=values.get("tstp"),
        tsfp=values.get("tsfp"),
        atsfp=values.get("atsfp"),
        client_hostname=values.get("client-hostname") or None,
        uid=values.get("uid"),
        vendor_class=values.get("set:vendor-class-identifier"),
    )


def _build_host(toks: pp.ParseResults, comments: list[str]) -> HostRecord:
    values = _collect(toks["fields"])
    label = str(toks["label"])
    mac = values.get("hardware")
    if mac is None:
        raise _Incomplete(f"host {label} has no hardware ethernet address")
    addresses = values.get("fixed-address")
    if not addresses:
        raise _Incomplete(f"host {label} has no fixed-address")
    address = addresses[0]
    if not isinstance(address, IPv4Address):
        raise _Incomplete(f"host {label} fixed-address {address!r} is not an IPv4 address")

    hostname = values.get("option:host-name") or values.get("ddns-hostname") or label
    description = " ".join(comments) or None
    return HostRecord(mac=mac, address=address, hostname=hostname, description=description, label=label)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

_MASKABLE = (_QUOTED_RAW("quoted") | _COMMENT("comment")).parse_with_tabs()
_HEADER = pp.Opt(pp.Regex(r"[^{};]+"))


def _blank(chunk: str) -> str:
    return re.sub(r"[^\n]", " ", chunk)


def _mask(text: str) -> tuple[str, str]:
    """Return (text without comments, text without comments or strings)."""
    stripped: list[str] = []
    masked: list[str] = []
    last = 0
    for toks, start, end in _MASKABLE.scan_string(text):
        between = text[last:start]
        chunk = text[start:end]
        stripped.append(between)
        masked.append(between)
        stripped.append(_blank(chunk) if "comment" in toks else chunk)
        masked.append(_blank(chunk))
        last = end
    stripped.append(text[last:])
    masked.append(text[last:])
    return "".join(stripped), "".join(masked)


def _locator(keyword: str) -> pp.ParserElement:
    block = pp.Group(_kw(keyword) + _HEADER + pp.nested_expr("{", "}"))("block")
    return (block | _kw(keyword)("orphan")).parse_with_tabs()


_LOCATORS = {Grammar.HOSTS: _locator("host"), Grammar.LEASES: _locator("lease")}


def _comments_in(text: str) -> list[str]:
    out = []
    for toks, _, _ in _MASKABLE.scan_string(text):
        if "comment" in toks:
            body = toks["comment"].lstrip("#").strip()
            if body:
                out.append(body)
    return out


def _excerpt(text: str, start: int) -> str:
    line = text[start:].split("\n", 1)[0].strip()
    return line if len(line) <= 80 else line[:77] + "..."


def parse(data: bytes | str, grammar: Grammar | str) -> ParseOutcome:
    """Parse a hosts file or lease log into records plus per-block diagnostics.

    Never raises on malformed content, and depends on nothing but ``data``:
    a lease without a binding state keeps ``state=None``.
    """
    grammar = Grammar(grammar)
    text = data.decode("utf-8", errors="replace") if isinstance(data, (bytes, bytearray)) else data

    stripped, masked = _mask(text)
    block_grammar = HOST_BLOCK if grammar is Grammar.HOSTS else LEASE_BLOCK
    keyword = "host" if grammar is Grammar.HOSTS else "lease"

    records: list[Record] = []
    diagnostics: list[Diagnostic] = []

    def _diagnose(loc: int, message: str, block_start: int) -> None:
        diag = Diagnostic(
            source=grammar,
            line=pp.lineno(loc, text),
            column=pp.col(loc, text),
            message=message,
            excerpt=_excerpt(text, block_start),
        )
        logger.debug("Skipped block: %s", diag)
        diagnostics.append(diag)

    for toks, start, end in _LOCATORS[grammar].scan_string(masked):
        if "orphan" in toks:
            _diagnose(start, f"{keyword} declaration has no complete {{ ... }} block", start)
            continue
        block_text = stripped[start:end]
        try:
            parsed = block_grammar.parse_string(block_text, parse_all=True)
            if grammar is Grammar.HOSTS:
                records.append(_build_host(parsed, _comments_in(text[start:end])))
            else:
                records.append(_build_lease(parsed))
        except pp.ParseBaseException as exc:
            _diagnose(start + exc.loc, exc.msg, start)
        except _Incomplete as exc:
            _diagnose(start, str(exc), start)

    return ParseOutcome(records, diagnostics)


def parse_hosts(data: bytes | str) -> ParseOutcome:
    return parse(data, Grammar.HOSTS)


def parse_leases(data: bytes | str) -> ParseOutcome:
    return parse(data, Grammar.LEASES)


def summarize(diagnostics: Sequence[Diagnostic]) -> str:
    """One-line summary for log messages."""
    if not diagnostics:
        return "no diagnostics"
    first = diagnostics[0]
    more = f" (+{len(diagnostics) - 1} more)" if len(diagnostics) > 1 else ""
    return f"{first}{more}"
