from __future__ import annotations

import argparse
import signal
import sys
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence

from common.logging_setup import get_logger, setup_logging
from ranking.output import build_curve_export, generate_curves, generate_curves_json, generate_results
from ranking.targets import load_compensation, load_targets
from scanner.cache import MeasurementCache, compute_domain_list_hash
from scanner.config import SUBDOMAINS, ScanParams, load_params
from scanner.domains import DeviceState, DomainScanner, DomainScanResult, DomainState, load_devices_from_cache
from scanner.errors import ConfigurationError
from scanner.network import HttpClient


log = get_logger("scanner")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INTERRUPTED = 130


@dataclass(slots=True)
class RunSummary:
    domains_total: int = 0
    resumed_from: int = 0
    unchanged: int = 0
    scanned: int = 0
    not_found: int = 0
    failed_domains: int = 0
    fetched: int = 0
    cached: int = 0
    failed_devices: int = 0
    devices_in_cache: int = 0
    results: Dict[str, int] = field(default_factory=dict)
    curves: int = 0
    elapsed_s: float = 0.0

    def add(self, res: DomainScanResult) -> None:
        if res.state is DomainState.UNCHANGED:
            self.unchanged += 1
        elif res.state is DomainState.SCANNED:
            self.scanned += 1
            self.fetched += res.count(DeviceState.FETCHED)
            self.cached += res.count(DeviceState.CACHED)
            self.failed_devices += res.count(DeviceState.FAILED)
        elif res.state is DomainState.NOT_FOUND:
            self.not_found += 1
        else:
            self.failed_domains += 1


class ScanRun:
    """
    One end-to-end scan: targets -> cache -> domain batches -> outputs.

    Index, domain hashes and checkpoint are persisted after every domain
    batch; on KeyboardInterrupt (SIGINT, or SIGTERM via `main`) the cache is
    persisted once more, the checkpoint is kept and the interrupt re-raised.
    """

    def __init__(
        self,
        params: ScanParams,
        client: Optional[HttpClient] = None,
        cache: Optional[MeasurementCache] = None,
    ):
        self.params = params
        self.client = client or HttpClient(params)
        self.cache = cache or MeasurementCache(params)

    def _resume_offset(self, domains: Sequence[str]) -> int:
        cp = self.cache.load_checkpoint()
        if not cp:
            return 0
        done = cp.get("completedDomains")
        same_list = cp.get("totalDomains") == len(domains) and cp.get("domainsHash") == compute_domain_list_hash(domains)
        if not same_list or not isinstance(done, int) or not 0 <= done <= len(domains):
            log.warning("checkpoint does not match domain list, starting over", extra={"extra": cp})
            return 0
        log.info("resuming from checkpoint", extra={"extra": {"completedDomains": done, "totalDomains": len(domains)}})
        return done

    def run(self, force: bool = False, domains: Optional[Sequence[str]] = None) -> RunSummary:
        t0 = time.perf_counter()
        P = self.params
        domain_list: List[str] = list(domains) if domains else list(SUBDOMAINS)

        # targets first: without them nothing is worth fetching
        compensation = load_compensation(P.compensation_dir)
        groups = load_targets(P.targets_dir, compensation)
        if not groups:
            raise ConfigurationError(f"no target curves found in {P.targets_dir}")
        log.info("targets loaded", extra={"extra": {"families": len(groups)}})

        self.cache.load()
        log.info("cache loaded", extra={"extra": self.cache.stats()})

        offset = self._resume_offset(domain_list)
        domains_hash = compute_domain_list_hash(domain_list)
        summary = RunSummary(domains_total=len(domain_list), resumed_from=offset)

        def on_batch_complete(done: int) -> None:
            self.cache.persist()
            self.cache.save_checkpoint(offset + done, len(domain_list), domains_hash)

        scanner = DomainScanner(self.client, self.cache, P)
        try:
            for res in scanner.scan_domains(domain_list[offset:], force=force, on_batch_complete=on_batch_complete):
                summary.add(res)
        except KeyboardInterrupt:
            log.warning("interrupted, persisting cache")
            self.cache.persist()
            raise
        self.cache.clear_checkpoint()

        devices = load_devices_from_cache(self.cache)
        summary.devices_in_cache = len(devices)
        summary.results = generate_results(devices, groups, P.data_dir, len(domain_list))

        export = build_curve_export(devices, compensation)
        try:
            summary.curves = generate_curves(export, P.curves_path)
        except (TypeError, ValueError) as e:
            log.warning("msgpack export failed, JSON fallback only", extra={"extra": {"error": str(e)}})
        generate_curves_json(export, P.curves_json_path)

        self.cache.persist()
        summary.elapsed_s = round(time.perf_counter() - t0, 1)
        return summary


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt(f"signal {signum}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Measurement archive scanner and PPI ranker")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--force", action="store_true", help="Rescan domains even if their catalog is unchanged")
    ap.add_argument("--domains", nargs="+", default=None, help="Scan only these domains")
    ap.add_argument("--log-level", default=None, help="Override logging.level from the config")
    args = ap.parse_args(argv)

    try:
        params = load_params(args.config)
    except ConfigurationError as e:
        log.error("bad configuration", extra={"extra": {"error": str(e)}})
        return EXIT_CONFIG
    setup_logging(args.log_level or params.log_level, params.log_format)
    signal.signal(signal.SIGTERM, _raise_interrupt)

    log.info("scan started", extra={"extra": {
        "domains": len(args.domains or SUBDOMAINS),
        "concurrentDomains": params.concurrent_domains,
        "concurrentMeasurements": params.concurrent_measurements,
        "force": args.force,
    }})
    scan = ScanRun(params)
    try:
        summary = scan.run(force=args.force, domains=args.domains)
    except ConfigurationError as e:
        log.error("cannot run scan", extra={"extra": {"error": str(e)}})
        return EXIT_CONFIG
    except KeyboardInterrupt:
        log.warning("scan interrupted; progress saved, rerun to resume")
        return EXIT_INTERRUPTED
    finally:
        scan.client.close()

    log.info("scan complete", extra={"extra": asdict(summary)})
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
