import os
from dataclasses import dataclass, field, fields
from typing import Dict, List

import yaml

from .countries import Country
from .errors import ConfigError, UnsupportedCountry


@dataclass
class OCRConfig:
    enabled: bool = True
    tesseract_cmd: str = ""
    language: str = "eng"
    timeout_sec: float = 10
    psm: str = "single-line"


@dataclass
class ScanConfig:
    country: str = "UK"
    max_workers: int = 1
    tie_band: float = 10.0
    target_size: List[int] = field(default_factory=lambda: [400, 150])
    binary_threshold: int = 128


@dataclass
class HTTPConfig:
    base_url: str = "http://localhost:3000/api"
    timeout_sec: float = 10
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentsConfig:
    mode: str = "dry_run"  # dry_run | http
    http: HTTPConfig = field(default_factory=HTTPConfig)


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    ocr: OCRConfig = field(default_factory=OCRConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    payments: PaymentsConfig = field(default_factory=PaymentsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _mapping(value, name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} section must be a mapping, got {type(value).__name__}")
    return value


def _section(cls, d):
    d = _mapping(d, cls.__name__)
    known = {f.name for f in fields(cls)}
    unknown = set(d) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(sorted(map(str, unknown)))}")
    return cls(**d)


def _number(value, name: str, integer: bool = False):
    kinds = (int,) if integer else (int, float)
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, kinds):
        kind = "an integer" if integer else "a number"
        raise ConfigError(f"{name} must be {kind}, got {value!r}")
    return value


def _validate(cfg: AppConfig) -> AppConfig:
    try:
        cfg.scan.country = Country.parse(cfg.scan.country).value
    except UnsupportedCountry as e:
        raise ConfigError(str(e)) from None
    if cfg.payments.mode not in ("dry_run", "http"):
        raise ConfigError(f"payments.mode must be dry_run or http, got {cfg.payments.mode!r}")
    size = cfg.scan.target_size
    if not isinstance(size, (list, tuple)) or len(size) != 2:
        raise ConfigError(f"scan.target_size must be two positive integers, got {size!r}")
    if min(_number(v, "scan.target_size", integer=True) for v in size) <= 0:
        raise ConfigError(f"scan.target_size must be two positive integers, got {cfg.scan.target_size}")
    if _number(cfg.scan.max_workers, "scan.max_workers", integer=True) < 1:
        raise ConfigError("scan.max_workers must be >= 1")
    _number(cfg.scan.tie_band, "scan.tie_band")
    if not 0 <= _number(cfg.scan.binary_threshold, "scan.binary_threshold", integer=True) <= 255:
        raise ConfigError("scan.binary_threshold must be between 0 and 255")
    if _number(cfg.payments.http.timeout_sec, "payments.http.timeout_sec") <= 0:
        raise ConfigError("payments.http.timeout_sec must be > 0")
    cfg.payments.http.headers = _mapping(cfg.payments.http.headers, "payments.http.headers")
    if _number(cfg.ocr.timeout_sec, "ocr.timeout_sec") < 0:
        raise ConfigError("ocr.timeout_sec must be >= 0")
    return cfg


def _dict_to_dataclass(d: dict) -> AppConfig:
    payments = _mapping(d.get("payments"), "payments")
    pay = _section(PaymentsConfig, {k: v for k, v in payments.items() if k != "http"})
    pay.http = _section(HTTPConfig, payments.get("http"))
    return AppConfig(
        ocr=_section(OCRConfig, d.get("ocr")),
        scan=_section(ScanConfig, d.get("scan")),
        payments=pay,
        logging=_section(LoggingConfig, d.get("logging")),
    )


def load_config(path: str = "config.yaml") -> AppConfig:
    data = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")

    # Allow simple env overrides
    cmd_env = os.getenv("TESSERACT_CMD")
    if cmd_env:
        data["ocr"] = {**_mapping(data.get("ocr"), "ocr"), "tesseract_cmd": cmd_env}

    api_env = os.getenv("PLATEPAY_API_URL")
    if api_env:
        payments = dict(_mapping(data.get("payments"), "payments"))
        payments["mode"] = "http"
        payments["http"] = {**_mapping(payments.get("http"), "payments.http"), "base_url": api_env}
        data["payments"] = payments

    country_env = os.getenv("PLATEPAY_COUNTRY")
    if country_env:
        data["scan"] = {**_mapping(data.get("scan"), "scan"), "country": country_env}

    return _validate(_dict_to_dataclass(data))
