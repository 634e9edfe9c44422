"""
Target curve loading.

Target files are grouped into families by base name; each family holds up
to one variant per rig/pinna. In-ear families that exist for only one rig
get the other rig's variant generated from the 5128 compensation curve.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

from common.frequency import R40_FREQUENCIES, align_to_r40, parse_frequency_response, rounded_db
from common.types import FrequencyCurve, TargetGroup, TargetVariant


log = logging.getLogger(__name__)

MIN_TARGET_POINTS = 10
HARMAN_OE_NAME = "Harman 2018"
DF_FAMILY_NAME = "Diffuse Field (Tilted)"
COMPENSATION_FILES = {"711": "711comp.txt", "5128": "5128comp.txt"}

_RIG_SUFFIX = re.compile(r"\s*\((?:5128|711)\)", re.IGNORECASE)


def classify_target_file(file_name: str) -> Tuple[str, str, str]:
    """
    Map a target file name to (family name, variant, device type).

      "Harman 2018 ..."          -> ("Harman 2018", "default", "headphone")
      "KEMAR DF (KB50xx).txt"    -> ("Diffuse Field (Tilted)", "kb5", "headphone")
      "5128 DF.txt"              -> ("Diffuse Field (Tilted)", "5128", "headphone")
      "Harman IE 2019 (5128).txt"-> ("Harman IE 2019", "5128", "iem")
      "Harman IE 2019.txt"       -> ("Harman IE 2019", "711", "iem")
    """
    if HARMAN_OE_NAME in file_name:
        return HARMAN_OE_NAME, "default", "headphone"

    if file_name.startswith("5128 DF") or file_name.startswith("KEMAR DF"):
        if "5128" in file_name:
            variant = "5128"
        elif "KB50xx" in file_name:
            variant = "kb5"
        elif "KB006x" in file_name:
            variant = "kb0065"
        else:
            variant = "default"
        return DF_FAMILY_NAME, variant, "headphone"

    variant = "5128" if "5128" in file_name.lower() else "711"
    base = _RIG_SUFFIX.sub("", file_name)
    if base.endswith(".txt"):
        base = base[: -len(".txt")]
    return base.strip(), variant, "iem"


def _read_curve(path: Path) -> Optional[FrequencyCurve]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.warning("target unreadable", extra={"extra": {"file": path.name, "error": str(e)}})
        return None
    return parse_frequency_response(text)


def load_compensation(compensation_dir: Path) -> Dict[str, Optional[FrequencyCurve]]:
    """R40-aligned rig compensation curves keyed "711"/"5128" (None when absent), levels rounded to 0.01 dB."""
    out: Dict[str, Optional[FrequencyCurve]] = {"711": None, "5128": None}
    for rig, name in COMPENSATION_FILES.items():
        path = Path(compensation_dir) / name
        if not path.exists():
            continue
        curve = _read_curve(path)
        if curve is None or curve.is_empty:
            log.warning("compensation curve empty", extra={"extra": {"file": name}})
            continue
        aligned = align_to_r40(curve)
        out[rig] = FrequencyCurve(R40_FREQUENCIES.copy(), np.asarray(rounded_db(aligned)))
        log.info("compensation loaded", extra={"extra": {"rig": rig}})
    return out


def fill_missing_rig_variants(groups: List[TargetGroup], comp_5128: Optional[FrequencyCurve]) -> int:
    """
    Derive the absent rig variant of in-ear families:
      5128 = 711 - comp,  711 = 5128 + comp   (on the R40 grid)
    Returns the number of variants generated.
    """
    if comp_5128 is None:
        return 0
    generated = 0
    for g in groups:
        if g.type != "iem":
            continue
        have_711, have_5128 = "711" in g.variants, "5128" in g.variants
        if have_711 and not have_5128:
            base = align_to_r40(g.variants["711"].curve)
            g.variants["5128"] = TargetVariant(f"{g.name} (5128).txt", FrequencyCurve(base.frequencies, base.db - comp_5128.db), True)
            generated += 1
        elif have_5128 and not have_711:
            base = align_to_r40(g.variants["5128"].curve)
            g.variants["711"] = TargetVariant(f"{g.name}.txt", FrequencyCurve(base.frequencies, base.db + comp_5128.db), True)
            generated += 1
    return generated


def load_targets(targets_dir: Path, compensation: Optional[Dict[str, Optional[FrequencyCurve]]] = None) -> List[TargetGroup]:
    """
    Load every *.txt target (compensation files excluded), dropping curves
    with fewer than 10 points. Families come back sorted by name.
    """
    targets_dir = Path(targets_dir)
    if not targets_dir.is_dir():
        log.warning("targets directory not found", extra={"extra": {"path": str(targets_dir)}})
        return []

    groups: Dict[str, TargetGroup] = {}
    for path in sorted(targets_dir.glob("*.txt")):
        if "comp" in path.name:
            continue
        curve = _read_curve(path)
        if curve is None or len(curve) < MIN_TARGET_POINTS:
            log.warning("skipping invalid target", extra={"extra": {"file": path.name}})
            continue
        base, variant, dtype = classify_target_file(path.name)
        group = groups.setdefault(base, TargetGroup(base, dtype))
        group.variants[variant] = TargetVariant(path.name, curve)
        log.debug("target loaded", extra={"extra": {"file": path.name, "family": base, "variant": variant, "type": dtype}})

    out = sorted(groups.values(), key=lambda g: g.name)
    if compensation:
        n = fill_missing_rig_variants(out, compensation.get("5128"))
        if n:
            log.info("generated rig variants", extra={"extra": {"count": n}})
    return out
