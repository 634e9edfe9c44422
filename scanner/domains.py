"""
Per-domain scanning: resolve the catalog, detect change, classify devices,
reuse cached measurements and fetch the missing ones.

Worker threads only read the cache. Every write (blobs, index entries,
domain hash records) happens in `apply_result`, which runs on the thread
driving `scan_domains`.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from common.frequency import average_curves, average_samples, curve_to_text, parse_frequency_response
from common.types import DeviceRecord, FrequencyCurve, MeasuredDevice
from scanner.cache import MeasurementCache, compute_catalog_hash, compute_measurement_hash, entry_key
from scanner.classifier import Rule, build_rules, classify_device, detect_pinna
from scanner.config import ENCRYPTED_DOMAINS, HIGH_QUALITY_DOMAINS, OVERRIDES, ScanParams
from scanner.network import HttpClient, parse_price, quote_file_name


log = logging.getLogger(__name__)

CATALOG_FILE = "phone_book.json"
CHANNELS = ("L", "R")

# file name (relative to the data directory) -> raw text or None
TextFetcher = Callable[[str], Optional[str]]


class DomainState(str, Enum):
    NOT_FOUND = "not_found"   # no catalog candidate answered with a JSON list
    UNCHANGED = "unchanged"   # catalog hash matches the stored one
    SCANNED = "scanned"       # catalog new or changed; devices resolved
    FAILED = "failed"         # unexpected error while scanning this domain


class DeviceState(str, Enum):
    CACHED = "cached"
    FETCHED = "fetched"
    FAILED = "failed"


@dataclass(slots=True)
class CatalogSource:
    catalog: List[Any]
    url: str
    base_url: str


@dataclass(slots=True)
class Measurement:
    text: str
    curve: FrequencyCurve


@dataclass(slots=True)
class DeviceOutcome:
    record: DeviceRecord
    state: DeviceState
    measurement: Optional[Measurement] = None


@dataclass(slots=True)
class DomainScanResult:
    domain: str
    state: DomainState
    catalog_hash: Optional[str] = None
    base_url: Optional[str] = None
    devices: List[DeviceOutcome] = field(default_factory=list)
    error: Optional[str] = None

    def count(self, state: DeviceState) -> int:
        return sum(1 for d in self.devices if d.state is state)

    def summary(self) -> dict:
        return {
            "domain": self.domain,
            "state": self.state.value,
            "devices": len(self.devices),
            "cached": self.count(DeviceState.CACHED),
            "fetched": self.count(DeviceState.FETCHED),
            "failed": self.count(DeviceState.FAILED),
            "error": self.error,
        }


class DomainScanner:
    def __init__(
        self,
        client: HttpClient,
        cache: MeasurementCache,
        params: ScanParams,
        rules: Optional[Tuple[Rule, ...]] = None,
    ):
        self.client = client
        self.cache = cache
        self.params = params
        self.rules = rules if rules is not None else build_rules(params.classifier_weights)

    # ----------------------------
    # Catalog resolution
    # ----------------------------
    def catalog_candidates(self, domain: str) -> Iterator[Tuple[str, str]]:
        """(catalog URL, base data URL) pairs in the order they are tried."""
        override = OVERRIDES.get(domain)
        if override:
            yield override, override[: -len(CATALOG_FILE)] if override.endswith(CATALOG_FILE) else override
        for path in self.params.probe_paths:
            url = self.params.catalog_url_template.format(domain=domain, path=path)
            yield url, url[: -len(CATALOG_FILE)]

    def resolve_catalog(self, domain: str) -> Optional[CatalogSource]:
        for url, base_url in self.catalog_candidates(domain):
            data = self.client.fetch_json(url)
            if isinstance(data, list):
                return CatalogSource(data, url, base_url)
            if data is not None:
                log.debug("catalog is not a list", extra={"extra": {"url": url}})
        return None

    def extract_devices(self, catalog: Sequence[Any], domain: str) -> List[DeviceRecord]:
        """Classified, de-duplicated (by primary file) devices; true-wireless products dropped."""
        out: List[DeviceRecord] = []
        seen = set()
        quality = "high" if domain in HIGH_QUALITY_DOMAINS else "low"
        for brand in catalog:
            if not isinstance(brand, dict):
                continue
            brand_name = str(brand.get("name") or "")
            for phone in brand.get("phones") or []:
                if not isinstance(phone, dict):
                    continue
                f = phone.get("file")
                file_name = f[0] if isinstance(f, list) and f else f
                if not file_name or not isinstance(file_name, str) or file_name in seen:
                    continue
                seen.add(file_name)
                result = classify_device(brand_name, str(phone.get("name") or ""), domain, file_name, self.rules)
                if result is None:
                    continue
                c, rig = result
                out.append(DeviceRecord(
                    domain=domain,
                    file_name=file_name,
                    name=c.display_name,
                    price=parse_price(phone.get("price")),
                    quality=quality,
                    type=c.type,
                    rig=rig,
                    pinna=c.pinna,
                ))
        return out

    # ----------------------------
    # Measurement resolution
    # ----------------------------
    def _fetcher(self, domain: str, base_url: str) -> TextFetcher:
        enc = ENCRYPTED_DOMAINS.get(domain)
        if enc is not None:
            return lambda name: self.client.fetch_encrypted(f"{enc.tool_path}data/{name}")
        return lambda name: self.client.fetch_text(f"{base_url}{quote_file_name(name)}")

    def _sample_count(self, domain: str) -> int:
        enc = ENCRYPTED_DOMAINS.get(domain)
        return enc.num_samples if enc is not None else 1

    def _load_channel(self, fetch: TextFetcher, file_name: str, channel: str, samples: int) -> Optional[Measurement]:
        """One channel; with several samples ("<file> L1.txt", "L2", ...) they are averaged."""
        if samples <= 1:
            text = fetch(f"{file_name} {channel}.txt")
            if text is None:
                return None
            curve = parse_frequency_response(text)
            return Measurement(text, curve) if not curve.is_empty else None

        curves = []
        for i in range(1, samples + 1):
            text = fetch(f"{file_name} {channel}{i}.txt")
            if text is None:
                continue
            curve = parse_frequency_response(text)
            if not curve.is_empty:
                curves.append(curve)
        if not curves:
            return None
        avg = average_samples(curves)
        return Measurement(curve_to_text(avg), avg)

    def _from_channel_pair(self, fetch: TextFetcher, file_name: str, samples: int) -> Optional[Measurement]:
        with ThreadPoolExecutor(max_workers=2) as ex:
            left, right = ex.map(lambda ch: self._load_channel(fetch, file_name, ch, samples), CHANNELS)
        if left is not None and right is not None:
            avg = average_curves(left.curve, right.curve)
            return Measurement(curve_to_text(avg), avg)
        return left or right

    def _from_unsuffixed(self, fetch: TextFetcher, file_name: str, samples: int) -> Optional[Measurement]:
        text = fetch(f"{file_name}.txt")
        if text is None:
            return None
        curve = parse_frequency_response(text)
        return Measurement(text, curve) if not curve.is_empty else None

    def fetch_measurement(self, domain: str, base_url: str, file_name: str) -> Optional[Measurement]:
        """Try the L/R pair, then the unsuffixed file; first result with enough points wins."""
        fetch = self._fetcher(domain, base_url)
        samples = self._sample_count(domain)
        for resolver in (self._from_channel_pair, self._from_unsuffixed):
            m = resolver(fetch, file_name, samples)
            if m is not None and len(m.curve) >= self.params.min_points:
                return m
        return None

    def _resolve_device(self, record: DeviceRecord, base_url: str) -> DeviceOutcome:
        entry = self.cache.entry(entry_key(record.domain, record.file_name))
        if entry and self.cache.has_measurement(entry.get("hash")):
            if self.cache.load_curve(entry["hash"]) is not None:
                record.hash = entry["hash"]
                return DeviceOutcome(record, DeviceState.CACHED)

        m = self.fetch_measurement(record.domain, base_url, record.file_name)
        if m is None:
            return DeviceOutcome(record, DeviceState.FAILED)
        record.hash = compute_measurement_hash(m.text)
        return DeviceOutcome(record, DeviceState.FETCHED, m)

    # ----------------------------
    # Domain scanning
    # ----------------------------
    def scan_domain(self, domain: str, force: bool = False) -> DomainScanResult:
        source = self.resolve_catalog(domain)
        if source is None:
            return DomainScanResult(domain, DomainState.NOT_FOUND, error="catalog not found")

        catalog_hash = compute_catalog_hash(source.catalog)
        prev = self.cache.domain_record(domain)
        if not force and prev is not None and prev.get("hash") == catalog_hash:
            return DomainScanResult(domain, DomainState.UNCHANGED, catalog_hash, source.base_url)

        records = self.extract_devices(source.catalog, domain)
        workers = max(1, min(self.params.concurrent_measurements, len(records)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            outcomes = list(ex.map(lambda r: self._resolve_device(r, source.base_url), records))
        return DomainScanResult(domain, DomainState.SCANNED, catalog_hash, source.base_url, outcomes)

    def apply_result(self, result: DomainScanResult) -> None:
        """Fold one domain's result into the cache. Failed devices leave their prior entry alone."""
        if result.state is DomainState.UNCHANGED:
            self.cache.touch_domain(result.domain)
            return
        if result.state is not DomainState.SCANNED:
            return
        for outcome in result.devices:
            if outcome.state is DeviceState.FETCHED:
                self.cache.save_measurement(outcome.record.hash, outcome.measurement.text)
                self.cache.update_entry(outcome.record)
            elif outcome.state is DeviceState.CACHED:
                self.cache.update_entry(outcome.record)
        self.cache.record_domain(result.domain, result.catalog_hash, len(result.devices))

    def scan_domains(
        self,
        domains: Sequence[str],
        force: bool = False,
        on_batch_complete: Optional[Callable[[int], None]] = None,
    ) -> List[DomainScanResult]:
        """
        Scan `domains` in batches of `concurrent_domains`. After each batch
        `on_batch_complete(n)` is called with the number of domains finished
        so far. KeyboardInterrupt propagates to the caller.
        """
        results: List[DomainScanResult] = []
        size = self.params.concurrent_domains
        total_batches = (len(domains) + size - 1) // size
        for start in range(0, len(domains), size):
            chunk = list(domains[start:start + size])
            log.info("batch started", extra={"extra": {"batch": start // size + 1, "of": total_batches, "domains": len(chunk)}})
            with ThreadPoolExecutor(max_workers=len(chunk)) as ex:
                futures = [(d, ex.submit(self.scan_domain, d, force)) for d in chunk]
                for domain, fut in futures:
                    try:
                        res = fut.result()
                    except Exception as e:
                        log.exception("domain scan crashed", extra={"extra": {"domain": domain}})
                        res = DomainScanResult(domain, DomainState.FAILED, error=str(e))
                    self.apply_result(res)
                    results.append(res)
                    level = logging.WARNING if res.state in (DomainState.NOT_FOUND, DomainState.FAILED) else logging.INFO
                    log.log(level, "domain done", extra={"extra": res.summary()})
            if on_batch_complete is not None:
                on_batch_complete(start + len(chunk))
        return results


def load_devices_from_cache(cache: MeasurementCache) -> List[MeasuredDevice]:
    """
    Every index entry whose blob loads with enough points. Headphone pinna is
    re-derived: 5128-rig entries are pinned to "5128", entries without a
    pinna get one from their name and domain.
    """
    out: List[MeasuredDevice] = []
    for record in cache.iter_records():
        curve = cache.load_curve(record.hash)
        if curve is None:
            continue
        if record.type == "headphone":
            if record.rig == "5128":
                record.pinna = "5128"
            elif not record.pinna:
                record.pinna = detect_pinna(record.name, record.domain)
        out.append(MeasuredDevice(record, curve))
    return out
