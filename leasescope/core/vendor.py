"""Hardware vendor resolution from the address prefix."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Protocol

import httpx
from mac_vendor_lookup import AsyncMacLookup, VendorNotFoundError

from leasescope.core.hwaddr import InvalidMacPrefix, MacPrefix
from leasescope.core.index import NibbleTrie
from leasescope.core.models import UNKNOWN

logger = logging.getLogger(__name__)

OUI_NIBBLES = 6


class VendorResolver(Protocol):
    async def resolve(self, prefix: MacPrefix) -> str:
        """Vendor name for ``prefix``, or ``"unknown"``."""
        ...


class MacLookupVendorResolver:
    """Resolves vendors with the mac-vendor-lookup database.

    The table is loaded once by :meth:`load` before serving. Until then, and
    if loading failed, every prefix resolves to ``"unknown"``; a lookup never
    triggers the download itself.
    """

    def __init__(self, lookup: AsyncMacLookup | None = None) -> None:
        self._lookup = lookup or AsyncMacLookup()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Read the cached vendor table, downloading it first when there is none."""
        try:
            await self._lookup.load_vendors()
        except Exception:
            # the library writes its cache while downloading; drop a partial one
            cache_path = getattr(self._lookup, "cache_path", None)
            if isinstance(cache_path, (str, Path)) and Path(cache_path).is_file():
                Path(cache_path).unlink()
                logger.debug("Removed incomplete vendor cache %s", cache_path)
            raise
        self._loaded = True
        logger.info("mac-vendor-lookup table loaded")

    async def resolve(self, prefix: MacPrefix) -> str:
        if not self._loaded or len(prefix) < OUI_NIBBLES:
            return UNKNOWN
        oui = MacPrefix(prefix.nibbles[:OUI_NIBBLES])
        try:
            return await self._lookup.lookup(str(oui)) or UNKNOWN
        except VendorNotFoundError:
            return UNKNOWN


# ---------------------------------------------------------------------------
# manuf-style OUI files
# ---------------------------------------------------------------------------

def parse_manuf(lines: Iterable[str]) -> NibbleTrie[str]:
    """Build a prefix trie from a Wireshark ``manuf`` or IEEE ``oui.txt`` listing.

    Accepted line shapes::

        00:00:0C\tCisco\tCisco Systems, Inc
        00:1B:C5:00:00:00/36\tConvergi\tConverging Systems Inc.
        FC-62-B9   (hex)   Raspberry Pi Trading Ltd
    """
    trie: NibbleTrie[str] = NibbleTrie()
    for line in lines:
        line = line.strip()
        if not line or line.startswith(("#", ";")):
            continue
        parts = line.split(None, 1)
        if len(parts) < 2:
            continue
        raw_prefix, rest = parts
        rest = rest.strip()
        if rest.startswith("(hex)"):
            vendor = rest[len("(hex)"):].strip()
        else:
            names = [n.strip() for n in rest.split("\t") if n.strip()]
            vendor = names[-1] if names else ""
        if not vendor:
            continue

        raw_prefix, _, mask = raw_prefix.partition("/")
        try:
            prefix = MacPrefix.parse(raw_prefix)
        except InvalidMacPrefix:
            continue
        nibbles = prefix.nibbles
        if mask:
            if not mask.isdigit() or int(mask) % 4:
                continue
            nibbles = nibbles[: int(mask) // 4]
        trie.insert(nibbles, vendor)
    return trie


class ManufVendorResolver:
    """Longest-prefix vendor match over a manuf file, so /28 and /36 blocks win over their /24."""

    def __init__(self, trie: NibbleTrie[str]) -> None:
        self._trie = trie

    @classmethod
    def from_file(cls, path: Path) -> ManufVendorResolver:
        with path.open("r", encoding="utf-8", errors="ignore") as f:
            trie = parse_manuf(f)
        logger.info("Loaded %d vendor prefixes from %s", len(trie), path)
        return cls(trie)

    def __len__(self) -> int:
        return len(self._trie)

    async def resolve(self, prefix: MacPrefix) -> str:
        return self._trie.longest_prefix(prefix.nibbles) or UNKNOWN


async def fetch_manuf(url: str, cache_path: Path, max_age_days: float = 7.0, timeout: float = 30.0) -> Path:
    """Download ``url`` to ``cache_path`` unless the cached copy is recent enough.

    A failed download falls back to a stale cached copy when there is one.
    """
    cache_path = cache_path.expanduser()
    if cache_path.exists():
        age = time.time() - cache_path.stat().st_mtime
        if age < max_age_days * 86400:
            logger.debug("Vendor database %s is %.1f days old; not refreshing", cache_path, age / 86400)
            return cache_path

    logger.info("Downloading vendor database from %s", url)
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        if cache_path.exists():
            logger.warning("Vendor database download failed (%s); using cached copy", exc)
            return cache_path
        raise

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = cache_path.with_suffix(cache_path.suffix + ".tmp")
    tmp.write_bytes(resp.content)
    tmp.replace(cache_path)
    return cache_path
