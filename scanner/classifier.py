"""
Device classification from catalog names.

Over-ear vs in-ear is decided by an additive score over an ordered rule
table; each rule contributes its weight at most once and a positive total
means headphone. Rules and weights are data so they can be tuned from
config/params.yaml without touching the matching code.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from scanner.config import (
    DEFAULT_CLASSIFIER_WEIGHTS,
    IE_FORCE_KEYWORDS,
    OE_MODEL_REGISTRY,
    OE_TAGS,
    PINNA_DOMAIN_OVERRIDES,
    RIG_5128_DOMAINS,
    STRICTLY_IE_BRANDS,
    STRICTLY_IE_DOMAINS,
    TWS_KEYWORDS,
)


# (upper-cased name, lower-cased domain) -> matched
Predicate = Callable[[str, str], bool]


@dataclass(slots=True, frozen=True)
class Rule:
    name: str
    weight: int
    predicate: Predicate


@dataclass(slots=True, frozen=True)
class Classification:
    type: str  # "iem" | "headphone"
    pinna: Optional[str]
    display_name: str = ""
    score: int = 0


def _contains_any(needles: Iterable[str]) -> Predicate:
    needles = tuple(needles)
    return lambda name, domain: any(n in name for n in needles)


def _domain_in(domains: Iterable[str]) -> Predicate:
    domains = frozenset(domains)
    return lambda name, domain: domain in domains


def _oe_domain_hint(name: str, domain: str) -> bool:
    return "5128" in domain or "headphone" in domain or domain == "crinaclehp"


def build_rules(weights: Optional[Mapping[str, int]] = None) -> Tuple[Rule, ...]:
    """Ordered rule table; `weights` overrides any subset of the defaults."""
    w: Dict[str, int] = dict(DEFAULT_CLASSIFIER_WEIGHTS)
    if weights:
        w.update(weights)
    return (
        Rule("oe_tag", w["oe_tag"], _contains_any(OE_TAGS)),
        Rule("oe_model", w["oe_model"], _contains_any(OE_MODEL_REGISTRY)),
        Rule("ie_brand", w["ie_brand"], _contains_any(STRICTLY_IE_BRANDS)),
        Rule("ie_keyword", w["ie_keyword"], _contains_any(IE_FORCE_KEYWORDS)),
        Rule("ie_domain", w["ie_domain"], _domain_in(STRICTLY_IE_DOMAINS)),
        Rule("oe_domain_hint", w["oe_domain_hint"], _oe_domain_hint),
    )


DEFAULT_RULES = build_rules()

_TWS_UPPER = tuple(k.upper() for k in TWS_KEYWORDS)
_KB0065 = re.compile(r"kb006\d")
_KB5 = re.compile(r"kb5(?:\d{3})?")


def headphone_score(name: str, domain: str, rules: Tuple[Rule, ...] = DEFAULT_RULES) -> Tuple[int, List[str]]:
    """Total score and the names of the rules that fired."""
    upper = name.upper()
    lower_domain = domain.lower()
    score = 0
    fired: List[str] = []
    for rule in rules:
        if rule.predicate(upper, lower_domain):
            score += rule.weight
            fired.append(rule.name)
    return score, fired


def is_headphone(name: str, domain: str, rules: Tuple[Rule, ...] = DEFAULT_RULES) -> bool:
    return headphone_score(name, domain, rules)[0] > 0


def is_tws(name: str) -> bool:
    upper = name.upper()
    return any(k in upper for k in _TWS_UPPER)


def detect_pinna(name: str, domain: str) -> str:
    """
    Ear simulator a headphone was measured on:
      1. "5128" in the domain or the name
      2. site-level override (sai, kuulokenurkka, crinacleHP -> kb5)
      3. model number in the name (KB006x -> kb0065, KB5xxx -> kb5)
      4. kb5
    """
    n = name.lower()
    d = domain.lower()
    if "5128" in d or "5128" in n:
        return "5128"
    if d in PINNA_DOMAIN_OVERRIDES:
        return PINNA_DOMAIN_OVERRIDES[d]
    if _KB0065.search(n):
        return "kb0065"
    if _KB5.search(n):
        return "kb5"
    return "kb5"


def detect_rig(domain: str, file_name: str, display_name: str) -> str:
    if domain in RIG_5128_DOMAINS or "5128" in domain:
        return "5128"
    if "(5128)" in file_name or "(5128)" in display_name:
        return "5128"
    return "711"


def classify(name: str, domain: str, rules: Tuple[Rule, ...] = DEFAULT_RULES) -> Classification:
    score, _ = headphone_score(name, domain, rules)
    if score > 0:
        return Classification("headphone", detect_pinna(name, domain), name, score)
    return Classification("iem", None, name, score)


def classify_device(
    brand: str,
    model: str,
    domain: str,
    file_name: str = "",
    rules: Tuple[Rule, ...] = DEFAULT_RULES,
) -> Optional[Tuple[Classification, str]]:
    """
    Classify a catalog entry. Returns (classification, rig), or None when
    the device is a true-wireless product and must not be scanned.
    A headphone measured on the 5128 rig always reports pinna "5128".
    """
    display_name = f"{brand} {model}".strip()
    if is_tws(display_name):
        return None
    c = classify(display_name, domain, rules)
    rig = detect_rig(domain, file_name, display_name)
    if c.type == "headphone" and rig == "5128" and c.pinna != "5128":
        c = Classification(c.type, "5128", c.display_name, c.score)
    return c, rig
