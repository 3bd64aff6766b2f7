import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "config/aggregator.yaml"
DEFAULT_URL = "http://feed.omgili.com/5Rh5AMTrc4Pv/mainstream/posts/"


# ------------------------- small utils -------------------------

def require_obj(d: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = d.get(key)
    if not isinstance(v, dict):
        raise ConfigError(f"Missing or invalid config.{key} (must be an object)")
    return v

def require(d: Dict[str, Any], key: str, t) -> Any:
    if key not in d:
        raise ConfigError(f"Missing config.{key}")
    v = d[key]
    # bool is an int subclass; reject it where a number is expected
    if not isinstance(v, t) or (isinstance(v, bool) and t is not bool):
        raise ConfigError(f"Invalid config.{key} type (expected {t}, got {type(v)})")
    return v

def getenv_required(name: str) -> str:
    v = os.getenv(name)
    if not v:
        raise ConfigError(f"Missing required env var: {name}")
    return v


# ------------------------- config dataclasses -------------------------

@dataclass(frozen=True)
class StoreCfg:
    host: str
    port: int
    db: int
    password: Optional[str]
    max_idle: int
    max_active: int
    list_name: str = "NEWS_XML"
    connect_attempts: int = 5
    connect_delay_sec: float = 1.0

@dataclass(frozen=True)
class LogicCfg:
    max_concurrent_downloads: int
    download_dir: str = "downloads"
    archive_ext: str = ".zip"
    record_ext: str = ".xml"
    default_url: str = DEFAULT_URL

@dataclass(frozen=True)
class HttpCfg:
    user_agent: str = "aggregator"
    timeout_connect: Optional[float] = 10.0
    timeout_read: Optional[float] = 60.0

@dataclass(frozen=True)
class LinksCfg:
    selector: str = "a[href]"

@dataclass(frozen=True)
class LoggingCfg:
    file: str = "logs/aggregator.log"
    level: str = "INFO"

@dataclass(frozen=True)
class AggregatorCfg:
    store: StoreCfg
    logic: LogicCfg
    http: HttpCfg
    links: LinksCfg
    logging: LoggingCfg


def load_config(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Config is not valid YAML: {path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError("YAML root must be an object")
    return cfg


def _optional_obj(cfg: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = cfg.get(key) or {}
    if not isinstance(v, dict):
        raise ConfigError(f"config.{key} must be an object if provided")
    return v


def coerce(d: Dict[str, Any], key: str, t, default: Any, path: str = "") -> Any:
    v = d.get(key, default)
    try:
        return t(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config.{path}{key} (expected {t.__name__}, got {v!r})") from e


def _timeout(timeout: Dict[str, Any], key: str, default: float) -> Optional[float]:
    # null disables the timeout
    if key in timeout and timeout[key] is None:
        return None
    return coerce(timeout, key, float, default, "http.timeout_sec.")


def parse_cfg(cfg: Dict[str, Any]) -> AggregatorCfg:
    store = require_obj(cfg, "store")
    logic = require_obj(cfg, "logic")
    http = _optional_obj(cfg, "http")
    links = _optional_obj(cfg, "links")
    log = _optional_obj(cfg, "logging")

    # store
    password = None
    password_env = store.get("password_env")
    if password_env:
        password = getenv_required(str(password_env))

    store_cfg = StoreCfg(
        host=require(store, "host", str),
        port=require(store, "port", int),
        db=coerce(store, "db", int, 0, "store."),
        password=password,
        max_idle=require(store, "max_idle", int),
        max_active=require(store, "max_active", int),
        list_name=str(store.get("list_name", "NEWS_XML")),
        connect_attempts=coerce(store, "connect_attempts", int, 5, "store."),
        connect_delay_sec=coerce(store, "connect_delay_sec", float, 1.0, "store."),
    )
    if store_cfg.max_idle < 0 or store_cfg.max_active < 0:
        raise ConfigError("store.max_idle and store.max_active must be >= 0")
    if store_cfg.max_active and store_cfg.max_idle > store_cfg.max_active:
        raise ConfigError("store.max_idle must not exceed store.max_active")
    if store_cfg.connect_attempts < 1:
        raise ConfigError("store.connect_attempts must be >= 1")

    # logic
    logic_cfg = LogicCfg(
        max_concurrent_downloads=require(logic, "max_concurrent_downloads", int),
        download_dir=str(logic.get("download_dir", "downloads")),
        archive_ext=str(logic.get("archive_ext", ".zip")),
        record_ext=str(logic.get("record_ext", ".xml")),
        default_url=str(logic.get("default_url", DEFAULT_URL)),
    )
    if logic_cfg.max_concurrent_downloads < 1:
        raise ConfigError("logic.max_concurrent_downloads must be >= 1")

    # http
    timeout = http.get("timeout_sec") or {}
    if timeout and not isinstance(timeout, dict):
        raise ConfigError("config.http.timeout_sec must be an object")

    http_cfg = HttpCfg(
        user_agent=str(http.get("user_agent", "aggregator")),
        timeout_connect=_timeout(timeout, "connect", 10),
        timeout_read=_timeout(timeout, "read", 60),
    )

    return AggregatorCfg(
        store=store_cfg,
        logic=logic_cfg,
        http=http_cfg,
        links=LinksCfg(selector=str(links.get("selector", "a[href]"))),
        logging=LoggingCfg(
            file=str(log.get("file", "logs/aggregator.log")),
            level=str(log.get("level", "INFO")).upper(),
        ),
    )
