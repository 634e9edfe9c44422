"""
Ranking: target families and result export

This package provides:
- Target curve loading, grouped into families with rig/pinna variants
- Rig compensation curves and generated 711/5128 variants
- Per-category PPI rankings and the compact curve export for client-side scoring
"""
from .output import generate_results
from .targets import load_targets

__all__ = ["generate_results", "load_targets"]
