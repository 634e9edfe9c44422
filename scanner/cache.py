"""
Content-addressed measurement cache.

Layout under `cache_dir`:
    index.json          {"version": 2, "lastScan": ..., "entries": {"domain::file": {...}}}
    domains.json        {"domain": {"hash", "lastChecked", "entryCount"}}
    checkpoint.json     {"completedDomains", "totalDomains", "domainsHash", "savedAt"}
    measurements/<hash>.bin   gzip of the raw measurement text, write-once

Every JSON document is replaced as a whole (temp file + rename), so a crash
leaves either the old or the new version on disk. Unreadable documents are
treated as empty.
"""
from __future__ import annotations

import gzip
import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from common.frequency import parse_frequency_response
from common.types import DeviceRecord, FrequencyCurve
from common.utils import iso_now_ms, read_json, today_iso, write_bytes_atomic, write_json_atomic
from scanner.config import ScanParams


log = logging.getLogger(__name__)

INDEX_VERSION = 2
HASH_LEN = 16


def compute_measurement_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LEN]


def _primary_file(phone: Dict[str, Any]) -> Optional[str]:
    f = phone.get("file")
    if isinstance(f, list):
        return f[0] if f else None
    return f


def _canonical(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_domain_list_hash(domains: Sequence[str]) -> str:
    """Identifies the ordered domain list a checkpoint offset refers to."""
    return hashlib.sha256("\n".join(domains).encode("utf-8")).hexdigest()[:HASH_LEN]


def compute_catalog_hash(catalog: List[Dict[str, Any]]) -> str:
    """
    Hash of the fields that matter for scanning (brand name, device name,
    primary file, price), sorted so reordering a catalog is not a change.
    Rows sharing a file or brand name are ordered by their full content.
    """
    normalized = []
    for brand in catalog:
        if not isinstance(brand, dict):
            continue
        phones = [
            {"name": p.get("name"), "file": _primary_file(p), "price": p.get("price")}
            for p in (brand.get("phones") or [])
            if isinstance(p, dict)
        ]
        phones.sort(key=lambda p: (str(p["file"] or ""), _canonical(p)))
        normalized.append({"name": brand.get("name"), "phones": phones})
    normalized.sort(key=lambda b: (str(b["name"] or ""), _canonical(b)))
    content = json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:HASH_LEN]


def entry_key(domain: str, file_name: str) -> str:
    return f"{domain}::{file_name}"


def _empty_index() -> Dict[str, Any]:
    return {"version": INDEX_VERSION, "lastScan": None, "entries": {}}


class MeasurementCache:
    """
    Owns the on-disk cache and its in-memory copies of the index and the
    domain hash table. Not thread-safe for writes: mutate only from the
    thread that drives the scan. Reads (`has_measurement`, `load_curve`,
    `entry`, `domain_record`) may be called from worker threads.
    """

    def __init__(self, params: ScanParams):
        self.params = params
        self.root = Path(params.cache_dir)
        self.index: Dict[str, Any] = _empty_index()
        self.domain_hashes: Dict[str, Dict[str, Any]] = {}
        self._curves: Dict[str, Optional[FrequencyCurve]] = {}
        self._memo_lock = threading.Lock()

    # -------- load / persist --------
    def load(self) -> "MeasurementCache":
        self.root.mkdir(parents=True, exist_ok=True)
        self.params.measurements_dir.mkdir(parents=True, exist_ok=True)
        self.index = self._load_index()
        self.domain_hashes = self._load_json_dict(self.params.domain_hashes_path, "domain hashes")
        self.clear_memo()
        return self

    def _load_index(self) -> Dict[str, Any]:
        path = self.params.index_path
        if not path.exists():
            return _empty_index()
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            log.warning("cache index unreadable, starting fresh", extra={"extra": {"path": str(path), "error": str(e)}})
            return _empty_index()
        if not isinstance(data, dict):
            log.warning("cache index malformed, starting fresh", extra={"extra": {"path": str(path)}})
            return _empty_index()
        entries = data.get("entries")
        if not isinstance(entries, dict):
            entries = {}
        version = data.get("version")
        if not isinstance(version, int) or version < INDEX_VERSION:
            log.info("migrating cache index", extra={"extra": {"from": version, "to": INDEX_VERSION, "entries": len(entries)}})
            return {"version": INDEX_VERSION, "lastScan": None, "entries": entries}
        data["entries"] = entries
        data.setdefault("lastScan", None)
        return data

    def _load_json_dict(self, path: Path, what: str) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            log.warning(f"{what} unreadable, starting fresh", extra={"extra": {"path": str(path), "error": str(e)}})
            return {}
        if not isinstance(data, dict):
            log.warning(f"{what} malformed, starting fresh", extra={"extra": {"path": str(path)}})
            return {}
        return data

    def save_index(self) -> None:
        self.index["lastScan"] = iso_now_ms()
        write_json_atomic(self.params.index_path, self.index)

    def save_domain_hashes(self) -> None:
        write_json_atomic(self.params.domain_hashes_path, self.domain_hashes)

    def persist(self) -> None:
        self.save_index()
        self.save_domain_hashes()

    # -------- measurement blobs --------
    def _blob_path(self, h: str) -> Path:
        return self.params.measurements_dir / f"{h}.bin"

    def has_measurement(self, h: Optional[str]) -> bool:
        return bool(h) and self._blob_path(h).exists()

    def save_measurement(self, h: str, text: str) -> bool:
        """Store a blob unless one already exists under `h`. Returns True if written."""
        path = self._blob_path(h)
        if path.exists():
            return False
        write_bytes_atomic(path, gzip.compress(text.encode("utf-8")))
        return True

    def load_measurement(self, h: Optional[str]) -> Optional[str]:
        if not h:
            return None
        path = self._blob_path(h)
        if not path.exists():
            return None
        try:
            return gzip.decompress(path.read_bytes()).decode("utf-8")
        except (OSError, EOFError, UnicodeDecodeError) as e:
            log.warning("measurement blob unreadable", extra={"extra": {"hash": h, "error": str(e)}})
            return None

    def load_curve(self, h: Optional[str]) -> Optional[FrequencyCurve]:
        """Parsed blob, or None if missing/unreadable/below min_points. Memoised per hash."""
        if not h:
            return None
        with self._memo_lock:
            if h in self._curves:
                return self._curves[h]
        text = self.load_measurement(h)
        curve = None
        if text is not None:
            parsed = parse_frequency_response(text)
            if len(parsed) >= self.params.min_points:
                curve = parsed
        with self._memo_lock:
            self._curves[h] = curve
        return curve

    def clear_memo(self) -> None:
        with self._memo_lock:
            self._curves.clear()

    # -------- index entries --------
    @property
    def entries(self) -> Dict[str, Dict[str, Any]]:
        return self.index["entries"]

    def entry(self, key: str) -> Optional[Dict[str, Any]]:
        return self.entries.get(key)

    def update_entry(self, record: DeviceRecord) -> Dict[str, Any]:
        """Merge `record` into its index entry, stamping lastSeen with today's date."""
        today = today_iso()
        prev = self.entries.get(record.key) or {}
        merged = dict(prev)
        merged.update({k: v for k, v in record.to_entry().items() if k not in ("firstSeen", "lastSeen")})
        merged["firstSeen"] = prev.get("firstSeen") or prev.get("lastSeen") or today
        merged["lastSeen"] = today
        self.entries[record.key] = merged
        record.first_seen = merged["firstSeen"]
        record.last_seen = today
        return merged

    def iter_records(self) -> Iterator[DeviceRecord]:
        for key, entry in self.entries.items():
            try:
                yield DeviceRecord.from_entry(key, entry)
            except (ValueError, TypeError, AttributeError) as e:
                log.warning("skipping malformed index entry", extra={"extra": {"key": key, "error": str(e)}})

    # -------- domain hashes --------
    def domain_record(self, domain: str) -> Optional[Dict[str, Any]]:
        rec = self.domain_hashes.get(domain)
        return rec if isinstance(rec, dict) else None

    def record_domain(self, domain: str, catalog_hash: str, entry_count: int) -> None:
        self.domain_hashes[domain] = {"hash": catalog_hash, "lastChecked": iso_now_ms(), "entryCount": entry_count}

    def touch_domain(self, domain: str) -> None:
        rec = dict(self.domain_record(domain) or {})
        rec["lastChecked"] = iso_now_ms()
        self.domain_hashes[domain] = rec

    # -------- checkpoint --------
    def save_checkpoint(self, completed_domains: int, total_domains: int, domains_hash: Optional[str] = None) -> None:
        write_json_atomic(self.params.checkpoint_path, {
            "completedDomains": completed_domains,
            "totalDomains": total_domains,
            "domainsHash": domains_hash,
            "savedAt": iso_now_ms(),
        })

    def load_checkpoint(self) -> Optional[Dict[str, Any]]:
        path = self.params.checkpoint_path
        if not path.exists():
            return None
        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            log.warning("checkpoint unreadable, ignoring", extra={"extra": {"error": str(e)}})
            return None
        return data if isinstance(data, dict) else None

    def clear_checkpoint(self) -> None:
        self.params.checkpoint_path.unlink(missing_ok=True)

    # -------- stats --------
    def stats(self) -> Dict[str, Any]:
        entries = [e for e in self.entries.values() if isinstance(e, dict)]
        return {
            "totalEntries": len(entries),
            "iems": sum(1 for e in entries if e.get("type") == "iem"),
            "headphones": sum(1 for e in entries if e.get("type") == "headphone"),
            "highQuality": sum(1 for e in entries if e.get("quality") == "high"),
            "rig711": sum(1 for e in entries if e.get("rig") == "711"),
            "rig5128": sum(1 for e in entries if e.get("rig") == "5128"),
            "lastScan": self.index.get("lastScan"),
        }
