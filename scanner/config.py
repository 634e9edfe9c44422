"""
Static source tables and runtime parameters.

The tables below describe the curated measurement archives (which domains to
scan, where their catalogs live, which are trusted, which need the encrypted
proxy) and the keyword lists the classifier works from. Runtime knobs
(timeouts, concurrency, paths, classifier weights) come from
config/params.yaml via `load_params`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from scanner.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------

SUBDOMAINS: Tuple[str, ...] = (
    "crinacle", "superreview", "hbb", "precog", "timmyv", "aftersound",
    "paulwasabii", "vortexreviews", "tonedeafmonk", "rg", "nymz",
    "gadgetrytech", "eliseaudio", "den-fi", "achoreviews", "aden", "adri-n",
    "animagus", "ankramutt", "arc", "atechreviews", "arn", "audioamigo",
    "theaudiostore", "awsmdanny", "bakkwatan", "banzai1122", "bassyalexander",
    "bassaudio", "bedrock", "boizoff", "breampike", "bryaudioreviews",
    "bukanaudiophile", "csi-zone", "dchpgall", "dhrme", "dl", "doltonius",
    "ducbloke", "ekaudio", "fahryst", "enemyspider", "eplv", "flare",
    "foxtoldmeso", "freeryder05", "hadoe", "harpo", "hore", "hu-fi",
    "ianfann", "ideru", "iemocean", "iemworld", "isaiahse", "jacstone",
    "jaytiss", "joshtbvo", "kazi", "kr0mka", "lestat", "listener",
    "loomynarty", "lown-fi", "melatonin", "mmagtech", "musicafe", "obodio",
    "practiphile", "pw", "ragnarok", "recode", "regancipher", "riz", "smirk",
    "soundignity", "suporsalad", "tgx78", "therollo9", "scboy", "seanwee",
    "silicagel", "sl0the", "soundcheck39", "tanchjim", "tedthepraimortis",
    "treblewellxtended", "vsg", "yanyin", "yoshiultra", "kuulokenurkka",
    "sai", "earphonesarchive", "auricularesargentina", "cammyfi", "capraaudio",
    "elrics", "filk", "unheardlab",
    # virtual domains: a second catalog of an existing site
    "crinacle5128", "listener5128", "crinacleHP", "earphonesarchiveHP",
)

OVERRIDES: Dict[str, str] = {
    "crinacle": "https://graph.hangout.audio/iem/711/data/phone_book.json",
    "crinacle5128": "https://graph.hangout.audio/iem/5128/data/phone_book.json",
    "crinacleHP": "https://graph.hangout.audio/headphones/data/phone_book.json",
    "superreview": "https://squig.link/data/phone_book.json",
    "den-fi": "https://ish.squig.link/data/phone_book.json",
    "paulwasabii": "https://pw.squig.link/data/phone_book.json",
    "listener5128": "https://listener.squig.link/5128/data/phone_book.json",
    "earphonesarchiveHP": "https://earphonesarchive.squig.link/headphones/data/phone_book.json",
}

HIGH_QUALITY_DOMAINS = frozenset({"crinacle", "earphonesarchive", "earphonesarchiveHP", "sai", "crinacle5128"})

# sourceDomain shown in results; everything else is "{domain}.squig.link"
DISPLAY_DOMAINS: Dict[str, str] = {
    "crinacle": "graph.hangout.audio",
    "crinacle5128": "graph.hangout.audio",
    "crinacleHP": "graph.hangout.audio",
}


@dataclass(slots=True, frozen=True)
class EncryptedSource:
    tool_path: str
    num_samples: int = 1


# Served only through the d-c.php proxy; direct .txt requests are refused.
ENCRYPTED_DOMAINS: Dict[str, EncryptedSource] = {
    "crinacle": EncryptedSource("iem/711/", 1),
    "crinacle5128": EncryptedSource("iem/5128/", 1),
    "crinacleHP": EncryptedSource("headphones/", 3),
}

RIG_5128_DOMAINS = frozenset({"earphonesarchive", "earphonesarchiveHP", "crinacle5128", "listener5128", "den-fi"})

# Headphone pinna is fixed by the site regardless of the device name.
PINNA_DOMAIN_OVERRIDES: Dict[str, str] = {
    "sai": "kb5",
    "kuulokenurkka": "kb5",
    "crinaclehp": "kb5",
}


def display_domain(domain: str) -> str:
    return DISPLAY_DOMAINS.get(domain, f"{domain}.squig.link")


# ---------------------------------------------------------------------------
# Classification tables
# ---------------------------------------------------------------------------

OE_TAGS: Tuple[str, ...] = ("(OE)", "(HP)", "OVER-EAR", "HEADPHONE", "CLOSED-BACK", "OPEN-BACK")

STRICTLY_IE_BRANDS: Tuple[str, ...] = (
    "KZ", "TRN", "LETSHUOER", "7HZ", "THIEAUDIO", "KIWI EARS", "TANGZU", "TANCHJIM",
    "SIMGOT", "QOA", "KINERA", "NICEHCK", "TRIPOWIN", "DUNU", "SOFTEARS", "EMPIRE EARS",
    "CAMPFIRE AUDIO", "VISION EARS", "UNIQUE MELODY", "ETYMOTIC", "DIREM", "SONICAST",
    "UCOTECH", "NOSTALGIA AUDIO", "TONEMAY", "CUSTOM ART", "RHA", "AFO", "FEAULLE",
    "64 AUDIO", "AFUL", "ZIIGAAT", "JUZEAR", "HIDIZS", "SALNOTES", "IKKO", "MOONDROP CHU",
    "MOONDROP ARIA", "WHIZZER", "FENGRU", "FAAEAL", "VENTURE ELECTRONICS", "VE MONK",
    "YINMAN", "BGVP", "MOONDROP QUARKS", "MOONDROP SPACESHIP", "MOONDROP KATO", "MOONDROP LAN",
    "RE-2", "NA3", "A8", "D-FI",
    "TIN", "CTM", "FEARLESS", "AUDIOSENSE", "NUARL", "QCY", "KLIPSCH",
)

OE_MODEL_REGISTRY: Tuple[str, ...] = (
    "MOONDROP VENUS", "MOONDROP COSMO", "MOONDROP PARA", "MOONDROP VOID", "MOONDROP JOKER", "GREAT GATSBY",
    "HD600", "HD650", "HD800", "HD6XX", "HD560", "HD580", "HD660", "HD490", "SENNHEISER HE1", "HD25", "HD280",
    "HD300", "MOMENTUM",
    "FOCAL UTOPIA", "FOCAL CLEAR", "FOCAL STELLIA", "FOCAL ELEX", "FOCAL RADIANCE", "FOCAL BATHYS",
    "FOCAL HADENYS", "FOCAL AZURYS", "FOCAL LISTEN", "FOCAL ELEGIA", "FOCAL CELESTEE",
    "MDR-7506", "MDR-V6", "MDR-CD900ST", "MDR-Z1R", "MDR-Z7", "MDR-MV1", "MDR-1A", "WH-1000", "WH-CH",
    "SUNDARA", "ANANDA", "SUSVARA", "ARYA", "HE1000", "HE400", "EDITION XS", "DEVA", "SHANGRI-LA",
    "AUDIVINA", "HE-R9", "HE-R10",
    "LCD-2", "LCD-3", "LCD-4", "LCD-X", "LCD-XC", "LCD-5", "LCD-MX4", "LCD-GX", "MAXWELL", "MOBIUS",
    "PENROSE", "MM-500", "MM-100",
    "KSC75", "PORTA PRO", "KPH30I", "KPH40", "UR20", "UR40",
    "FT3", "FT5", "FT1", "JT1",
    "K701", "K702", "K612", "K240", "K141", "K550", "K812", "K712", "K371", "K361",
    "ATH-M50", "ATH-M40", "ATH-M30", "ATH-M20", "ATH-AD", "ATH-A", "ATH-R70X", "ATH-AW", "ATH-WP",
    "FINAL D8000", "FINAL SONOROUS", "FINAL UX3000", "PANDORA",
    "DT770", "DT880", "DT990", "DT1990", "DT1770", "DT700", "DT900", "AMIRON", "CUSTOM ONE", "T1", "T5",
)

STRICTLY_IE_DOMAINS = frozenset({
    "dchpgall", "hbb", "precog", "timmyv", "aftersound", "paulwasabii", "tonedeafmonk",
    "vortexreviews", "nymz", "rg", "eliseaudio", "achoreviews",
    "animagus", "ankramutt", "atechreviews", "awsmdanny", "bakkwatan", "banzai1122",
    "bassyalexander", "breampike", "bryaudioreviews", "bukanaudiophile", "csi-zone",
    "ekaudio", "enemyspider", "eplv", "foxtoldmeso", "freeryder05", "hu-fi", "ianfann",
    "ideru", "iemocean", "iemworld", "isaiahse", "jacstone", "jaytiss", "joshtbvo",
    "kazi", "lestat", "loomynarty", "lown-fi", "melatonin", "mmagtech", "musicafe",
    "obodio", "practiphile", "recode", "riz", "smirk", "soundignity", "suporsalad",
    "tgx78", "therollo9", "scboy", "seanwee", "silicagel", "sl0the", "soundcheck39",
    "tanchjim", "tedthepraimortis", "treblewellxtended", "yanyin", "yoshiultra",
    "crinacle", "crinacle5128",
})

IE_FORCE_KEYWORDS: Tuple[str, ...] = (
    "IEM", "IN-EAR", "MONITOR", "EARPHONE", "EARBUD", "BUDS", "PODS", "TWS", "WIRELESS IEM",
    "WF-", "IE 200", "IE 300", "IE 600", "IE 900", "CX ", "MX ", "ISINE", "LCD-I", "EUCLID", "SPHEAR", "LYRIC",
)

TWS_KEYWORDS: Tuple[str, ...] = ("Earbud", "TWS", "Wireless", "Buds", "Pods", "True Wireless", "AirPods")

DEFAULT_CLASSIFIER_WEIGHTS: Dict[str, int] = {
    "oe_tag": 100,
    "oe_model": 100,
    "ie_brand": -200,
    "ie_keyword": -200,
    "ie_domain": -150,
    "oe_domain_hint": 30,
}


# ---------------------------------------------------------------------------
# Runtime parameters
# ---------------------------------------------------------------------------

DEFAULT_USER_AGENT = "SquigRank-Scanner/2.0"
DEFAULT_PROXY_URL = "https://graph.hangout.audio/d-c.php"
DEFAULT_CATALOG_URL_TEMPLATE = "https://{domain}.squig.link/{path}data/phone_book.json"
DEFAULT_PROBE_PATHS: Tuple[str, ...] = ("", "iems/", "headphones/", "earbuds/", "5128/", "headphones/5128/")


@dataclass(slots=True)
class ScanParams:
    """
    Runtime knobs for a scan. Defaults mirror config/params.yaml; every
    field can be overridden from the `scanner`, `paths`, `classifier` and
    `logging` sections of that file.
    """
    catalog_timeout: float = 30.0
    measurement_timeout: float = 5.0
    concurrent_domains: int = 10
    concurrent_measurements: int = 16
    retry_attempts: int = 2
    retry_delay: float = 1.0
    min_points: int = 10
    user_agent: str = DEFAULT_USER_AGENT
    proxy_url: str = DEFAULT_PROXY_URL
    catalog_url_template: str = DEFAULT_CATALOG_URL_TEMPLATE
    probe_paths: Tuple[str, ...] = DEFAULT_PROBE_PATHS

    cache_dir: Path = Path("public/cache")
    data_dir: Path = Path("public/data")
    targets_dir: Path = Path("public/targets")
    compensation_dir: Path = Path("compensation")

    classifier_weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_CLASSIFIER_WEIGHTS))
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self) -> None:
        for name in ("cache_dir", "data_dir", "targets_dir", "compensation_dir"):
            setattr(self, name, Path(getattr(self, name)))
        self.probe_paths = tuple(self.probe_paths)
        if self.concurrent_domains < 1 or self.concurrent_measurements < 1:
            raise ConfigurationError("concurrency limits must be >= 1")
        if self.retry_attempts < 0:
            raise ConfigurationError("retry_attempts must be >= 0")
        unknown = set(self.classifier_weights) - set(DEFAULT_CLASSIFIER_WEIGHTS)
        if unknown:
            raise ConfigurationError(f"unknown classifier weights: {sorted(unknown)}")

    # -------- derived paths --------
    @property
    def index_path(self) -> Path:
        return self.cache_dir / "index.json"

    @property
    def domain_hashes_path(self) -> Path:
        return self.cache_dir / "domains.json"

    @property
    def checkpoint_path(self) -> Path:
        return self.cache_dir / "checkpoint.json"

    @property
    def measurements_dir(self) -> Path:
        return self.cache_dir / "measurements"

    @property
    def curves_path(self) -> Path:
        return self.data_dir / "curves.msgpack"

    @property
    def curves_json_path(self) -> Path:
        return self.data_dir / "curves.json"


_SCANNER_KEYS = {
    "catalog_timeout", "measurement_timeout", "concurrent_domains", "concurrent_measurements",
    "retry_attempts", "retry_delay", "min_points", "user_agent", "proxy_url",
    "catalog_url_template", "probe_paths",
}
_PATH_KEYS = {"cache_dir", "data_dir", "targets_dir", "compensation_dir"}


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"cannot read parameter file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"parameter file {path} must contain a mapping")
    return data


def params_from_mapping(P: Mapping[str, Any], base_dir: Optional[Path] = None) -> ScanParams:
    """Build ScanParams from a parsed params.yaml mapping; relative paths resolve against `base_dir`."""
    kwargs: Dict[str, Any] = {}

    scanner = P.get("scanner") or {}
    for k, v in scanner.items():
        if k not in _SCANNER_KEYS:
            raise ConfigurationError(f"unknown scanner parameter: {k}")
        kwargs[k] = v

    paths = P.get("paths") or {}
    for k, v in paths.items():
        if k not in _PATH_KEYS:
            raise ConfigurationError(f"unknown path parameter: {k}")
        p = Path(v)
        if base_dir is not None and not p.is_absolute():
            p = base_dir / p
        kwargs[k] = p

    weights = (P.get("classifier") or {}).get("weights") or {}
    if weights:
        merged = dict(DEFAULT_CLASSIFIER_WEIGHTS)
        merged.update({k: int(v) for k, v in weights.items()})
        kwargs["classifier_weights"] = merged

    logging_cfg = P.get("logging") or {}
    if "level" in logging_cfg:
        kwargs["log_level"] = str(logging_cfg["level"])
    if "format" in logging_cfg:
        kwargs["log_format"] = str(logging_cfg["format"])

    return ScanParams(**kwargs)


def load_params(path: Optional[str | os.PathLike] = None) -> ScanParams:
    """
    Load runtime parameters. A missing file yields the built-in defaults;
    an unreadable or malformed one is a configuration error.
    """
    if path is None:
        return ScanParams()
    p = Path(path)
    if not p.exists():
        return ScanParams()
    return params_from_mapping(_load_yaml(p), base_dir=None)
