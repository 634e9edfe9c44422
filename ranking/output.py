"""
Scoring and export.

Each cached device is scored against every compatible target family using
the variant that matches its rig (in-ear) or pinna (over-ear). Ranked lists
are written per category; every device's R40 curve is exported for
client-side re-scoring.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import msgpack

from common.frequency import R40_FREQUENCIES, align_to_r40, rounded_db
from common.ppi import calculate_ppi
from common.types import FrequencyCurve, MeasuredDevice, ScoredDevice, TargetGroup, TargetVariant
from common.utils import iso_now_ms, write_bytes_atomic, write_json_atomic
from scanner.config import RIG_5128_DOMAINS, display_domain


log = logging.getLogger(__name__)

CURVES_VERSION = 2

# first variant present wins
VARIANT_PREFERENCE: Dict[Tuple[str, str], Tuple[str, ...]] = {
    ("iem", "711"): ("711", "default"),
    ("iem", "5128"): ("5128", "default"),
    ("headphone", "kb5"): ("kb5", "default"),
    ("headphone", "kb0065"): ("kb0065", "kb5", "default"),
    ("headphone", "5128"): ("5128", "default"),
}


@dataclass(slots=True, frozen=True)
class ResultCategory:
    name: str
    device_type: str
    pinna: Optional[str]
    file_name: str


RESULT_CATEGORIES: Tuple[ResultCategory, ...] = (
    ResultCategory("iem", "iem", None, "results.json"),
    ResultCategory("hp_kb5", "headphone", "kb5", "results_hp_kb5.json"),
    ResultCategory("hp_kb0065", "headphone", "kb0065", "results_hp_kb0065.json"),
    ResultCategory("hp_5128", "headphone", "5128", "results_hp_5128.json"),
)


def scoring_slot(device: MeasuredDevice) -> Tuple[str, str]:
    """(device type, rig-or-pinna) used to look up the variant preference."""
    r = device.record
    if r.type == "iem":
        return "iem", "5128" if (r.domain in RIG_5128_DOMAINS or r.rig == "5128") else "711"
    return "headphone", r.pinna or "kb5"


def select_variant(group: TargetGroup, slot: Tuple[str, str]) -> Optional[Tuple[str, TargetVariant]]:
    for name in VARIANT_PREFERENCE.get(slot, ()):
        v = group.variants.get(name)
        if v is not None:
            return name, v
    return None


def _rank_key(s: ScoredDevice):
    price = s.record.price
    return (-s.similarity, price is None, price if price is not None else 0.0)


def rank(scored: List[ScoredDevice]) -> List[ScoredDevice]:
    """Descending similarity; ties by ascending price, unknown price last."""
    return sorted(scored, key=_rank_key)


def score_group(devices: Sequence[MeasuredDevice], group: TargetGroup) -> List[ScoredDevice]:
    out: List[ScoredDevice] = []
    for d in devices:
        if d.record.type != group.type:
            continue
        picked = select_variant(group, scoring_slot(d))
        if picked is None:
            continue
        variant_name, variant = picked
        res = calculate_ppi(d.curve, variant.curve)
        out.append(ScoredDevice(d.record, res.ppi, res.stdev, res.slope, res.avg_error, variant_name))
    return rank(out)


def _category_devices(devices: Sequence[MeasuredDevice], cat: ResultCategory) -> List[MeasuredDevice]:
    return [
        d for d in devices
        if d.record.type == cat.device_type and (cat.pinna is None or d.record.pinna == cat.pinna)
    ]


def score_category(devices: Sequence[MeasuredDevice], groups: Sequence[TargetGroup], cat: ResultCategory) -> List[Dict[str, Any]]:
    members = _category_devices(devices, cat)
    results = []
    for g in groups:
        if g.type != cat.device_type:
            continue
        if cat.pinna is not None:
            picked = select_variant(g, (cat.device_type, cat.pinna))
            if picked is None:
                continue
            target_files = {picked[0]: picked[1].file_name}
        else:
            target_files = {k: v.file_name for k, v in g.variants.items()}
        ranked = score_group(members, g)
        results.append({
            "targetName": g.name,
            "targetFiles": target_files,
            "scoringMethod": "ppi",
            "ranked": [s.to_dict(display_domain(s.record.domain)) for s in ranked],
        })
    return results


def generate_results(
    devices: Sequence[MeasuredDevice],
    groups: Sequence[TargetGroup],
    data_dir: Path,
    domains_scanned: int,
    categories: Sequence[ResultCategory] = RESULT_CATEGORIES,
) -> Dict[str, int]:
    """Write one ranked-result document per category. Returns entries per category."""
    counts: Dict[str, int] = {}
    generated_at = iso_now_ms()
    for cat in categories:
        doc: Dict[str, Any] = {
            "generatedAt": generated_at,
            "totalIEMs": len(_category_devices(devices, cat)),
            "domainsScanned": domains_scanned,
        }
        if cat.pinna is not None:
            doc["rigType"] = cat.pinna
        doc["results"] = score_category(devices, groups, cat)
        write_json_atomic(Path(data_dir) / cat.file_name, doc)
        counts[cat.name] = doc["totalIEMs"]
        log.info("results written", extra={"extra": {"category": cat.name, "entries": doc["totalIEMs"], "targets": len(doc["results"])}})
    return counts


# ----------------------------
# Curve export
# ----------------------------
def _comp_list(comp: Optional[FrequencyCurve]) -> Optional[List[float]]:
    return None if comp is None else [float(v) for v in comp.db]


def build_curve_export(devices: Sequence[MeasuredDevice], compensation: Dict[str, Optional[FrequencyCurve]]) -> Dict[str, Any]:
    entries = []
    for d in devices:
        r = d.record
        entries.append({
            "id": r.key,
            "name": r.name,
            "db": rounded_db(align_to_r40(d.curve)),
            "type": 1 if r.type == "headphone" else 0,
            "quality": 1 if r.quality == "high" else 0,
            "price": r.price,
            "rig": 1 if r.rig == "5128" else 0,
            "pinna": r.pinna,
        })
    return {
        "meta": {
            "version": CURVES_VERSION,
            "frequencies": [float(f) for f in R40_FREQUENCIES],
            "compensation711": _comp_list(compensation.get("711")),
            "compensation5128": _comp_list(compensation.get("5128")),
        },
        "entries": entries,
    }


def generate_curves(export: Dict[str, Any], path: Path) -> int:
    write_bytes_atomic(Path(path), msgpack.packb(export, use_bin_type=True))
    log.info("curves written", extra={"extra": {"path": str(path), "entries": len(export["entries"])}})
    return len(export["entries"])


def generate_curves_json(export: Dict[str, Any], path: Path) -> int:
    """Compact per-id JSON fallback: {id: {d, t, q, p, n}}."""
    meta = {k: v for k, v in export["meta"].items() if k != "version"}
    curves = {
        e["id"]: {"d": e["db"], "t": e["type"], "q": e["quality"], "p": e["price"], "n": e["pinna"]}
        for e in export["entries"]
    }
    write_json_atomic(Path(path), {"meta": meta, "curves": curves}, indent=None)
    return len(curves)
