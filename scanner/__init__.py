"""
Scanner: measurement archive collection

This package provides:
- Catalog discovery per domain (hard overrides, then probed URL conventions)
- Device classification (in-ear / over-ear / true-wireless, rig, pinna)
- HTTP access with timeouts and catalog retries, plus the encrypted proxy
- A content-addressed, crash-safe measurement cache with checkpoint/resume
- The batch orchestrator that turns a scan into ranked result documents

Entry point:
    python -m scanner.pipeline --config config/params.yaml
"""
from .cache import MeasurementCache
from .domains import DomainScanner

__all__ = ["MeasurementCache", "DomainScanner"]
