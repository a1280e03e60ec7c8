from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from common.geo import MAX_LAT, Region


DEFAULT_CONFIG_PATH = "config/params.yaml"
CONFIG_ENV = "TILEPROXY_CONFIG"

TWO_DAYS_S = 2 * 24 * 3600


@dataclass(frozen=True)
class CacheSettings:
    root: Path = Path("data/tiles")
    queue_file: Optional[Path] = None  # defaults to <root>/refresh.queue
    freshness_window_s: float = TWO_DAYS_S
    read_lock_timeout_s: Optional[float] = None  # defaults to upstream.timeout_s

    @property
    def queue_path(self) -> Path:
        return self.queue_file if self.queue_file is not None else self.root / "refresh.queue"


@dataclass(frozen=True)
class UpstreamSettings:
    url_template: str = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
    subdomains: Tuple[str, ...] = ()
    user_agent: str = "tileproxy/0.1"
    referer: Optional[str] = None
    timeout_s: float = 30.0


@dataclass(frozen=True)
class RefreshSettings:
    max_per_run: int = 50


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass(frozen=True)
class Settings:
    cache: CacheSettings = field(default_factory=CacheSettings)
    upstream: UpstreamSettings = field(default_factory=UpstreamSettings)
    region: Region = field(default_factory=Region)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @property
    def read_lock_timeout_s(self) -> float:
        t = self.cache.read_lock_timeout_s
        return self.upstream.timeout_s if t is None else t


def _positive(name: str, v: Any) -> float:
    f = float(v)
    if f <= 0:
        raise ValueError(f"{name} must be > 0")
    return f


def settings_from_dict(P: Dict) -> Settings:
    """Build Settings from the parsed YAML mapping; unknown keys are ignored."""
    P = P or {}
    c = P.get("cache", {}) or {}
    u = P.get("upstream", {}) or {}
    r = P.get("region", {}) or {}
    rf = P.get("refresh", {}) or {}
    s = P.get("server", {}) or {}

    root = Path(c.get("root", "data/tiles"))
    queue_file = c.get("queue_file")
    read_timeout = c.get("read_lock_timeout_s")
    cache = CacheSettings(
        root=root,
        queue_file=Path(queue_file) if queue_file else None,
        freshness_window_s=_positive("cache.freshness_window_s", c.get("freshness_window_s", TWO_DAYS_S)),
        read_lock_timeout_s=None if read_timeout is None else _positive("cache.read_lock_timeout_s", read_timeout),
    )

    template = str(u.get("url_template", UpstreamSettings.url_template))
    for ph in ("{z}", "{x}", "{y}"):
        if ph not in template:
            raise ValueError(f"upstream.url_template is missing {ph}")
    subdomains = tuple(str(v) for v in (u.get("subdomains") or ()))
    if "{s}" in template and not subdomains:
        raise ValueError("upstream.url_template uses {s} but no subdomains are configured")
    upstream = UpstreamSettings(
        url_template=template,
        subdomains=subdomains,
        user_agent=str(u.get("user_agent", UpstreamSettings.user_agent)),
        referer=u.get("referer"),
        timeout_s=_positive("upstream.timeout_s", u.get("timeout_s", 30.0)),
    )

    region = Region.from_bbox(
        r.get("bbox", [-180.0, -MAX_LAT, 180.0, MAX_LAT]),
        min_zoom=int(r.get("min_zoom", 0)),
        max_zoom=int(r.get("max_zoom", 19)),
    )

    max_per_run = int(rf.get("max_per_run", 50))
    if max_per_run < 0:
        raise ValueError("refresh.max_per_run must be >= 0")

    return Settings(
        cache=cache,
        upstream=upstream,
        region=region,
        refresh=RefreshSettings(max_per_run=max_per_run),
        server=ServerSettings(host=str(s.get("host", "0.0.0.0")), port=int(s.get("port", 8000))),
    )


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from YAML.
    Path precedence: explicit arg, env TILEPROXY_CONFIG, config/params.yaml.
    A missing file yields the built-in defaults.
    """
    path = path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return Settings()
    with open(path, "r") as f:
        return settings_from_dict(yaml.safe_load(f) or {})
