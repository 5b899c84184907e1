"""Configuration for cellttl, read from TOML.

Files are layered, later ones overriding earlier ones key by key within
each section:

1. ``~/.cellttl/config.toml``
2. ``<project>/.cellttl/config.toml``, or ``<project>/cellttl.toml`` if absent
3. the file named by ``$CELLTTL_CONFIG``, when set

Unknown keys are ignored; invalid values raise :class:`ConfigError`.
"""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from cellttl_core.errors import ConfigError

CONFIG_ENV = "CELLTTL_CONFIG"


def _read(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc


def _layer(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for section, values in top.items():
        if isinstance(values, dict) and isinstance(out.get(section), dict):
            out[section] = out[section] | values
        else:
            out[section] = values
    return out


def config_paths(project_dir: Path | str | None = None) -> list[Path]:
    """Candidate config files, lowest precedence first."""
    project = Path.cwd() if project_dir is None else Path(project_dir)
    local = project / ".cellttl" / "config.toml"
    if not local.exists():
        local = project / "cellttl.toml"
    paths = [Path.home() / ".cellttl" / "config.toml", local]
    if override := os.environ.get(CONFIG_ENV):
        paths.append(Path(override))
    return paths


# ── Sections ─────────────────────────────────────────────────────────

def _require_int(section: str, **values: Any) -> None:
    for name, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{section}.{name} must be an integer, got {value!r}")


@dataclass(frozen=True, slots=True)
class StoreConfig:
    name: str = "cellttl"
    column_family: str = "default"
    default_column: str = "value"
    max_versions: int = 1
    max_age_seconds: int | None = None

    def __post_init__(self) -> None:
        _require_int("store", max_versions=self.max_versions)
        if self.max_age_seconds is not None:
            _require_int("store", max_age_seconds=self.max_age_seconds)
        if not self.name:
            raise ConfigError("store.name must not be empty")
        if self.max_versions < 1:
            raise ConfigError("store.max_versions must be >= 1")
        if self.max_age_seconds is not None and self.max_age_seconds <= 0:
            raise ConfigError("store.max_age_seconds must be positive")

    @property
    def metadata_name(self) -> str:
        return f"{self.name}_metadata"

    @property
    def metadata_family(self) -> str:
        return f"{self.column_family}_metadata"


@dataclass(frozen=True, slots=True)
class TTLConfig:
    interval_ms: int = 5000
    min_jitter_ms: int = 2000
    max_jitter_ms: int = 30000
    shard_count: int = 3
    hash_seed: int = 1

    def __post_init__(self) -> None:
        _require_int(
            "ttl",
            interval_ms=self.interval_ms,
            min_jitter_ms=self.min_jitter_ms,
            max_jitter_ms=self.max_jitter_ms,
            shard_count=self.shard_count,
            hash_seed=self.hash_seed,
        )
        if self.interval_ms <= 0:
            raise ConfigError("ttl.interval_ms must be positive")
        if self.min_jitter_ms < 0 or self.max_jitter_ms < 0:
            raise ConfigError("ttl jitter bounds must not be negative")
        if self.min_jitter_ms > self.max_jitter_ms:
            raise ConfigError("ttl.min_jitter_ms must not exceed ttl.max_jitter_ms")
        if self.shard_count < 1:
            raise ConfigError("ttl.shard_count must be >= 1")


@dataclass(frozen=True, slots=True)
class BackendConfig:
    tier: str = "sqlite"
    sqlite_path: str = ".cellttl/cellttl.db"
    redis_url: str = "redis://localhost:6379"
    redis_prefix: str = "cellttl:"


@dataclass(frozen=True, slots=True)
class CellTTLConfig:
    """Top-level configuration: ``[store]``, ``[ttl]`` and ``[backend]``."""
    store: StoreConfig = field(default_factory=StoreConfig)
    ttl: TTLConfig = field(default_factory=TTLConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    @classmethod
    def from_toml(cls, path: Path | str = "cellttl.toml") -> CellTTLConfig:
        """Read a single file; a missing file yields the defaults."""
        return cls.from_dict(_read(Path(path)))

    @classmethod
    def load(cls, project_dir: Path | str | None = None) -> CellTTLConfig:
        raw: dict[str, Any] = {}
        for path in config_paths(project_dir):
            raw = _layer(raw, _read(path))
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CellTTLConfig:
        sections = {}
        for f in fields(cls):
            section = raw.get(f.name, {})
            if not isinstance(section, dict):
                raise ConfigError(f"[{f.name}] must be a table, got {type(section).__name__}")
            section_type = f.default_factory
            known = {sf.name for sf in fields(section_type)}
            try:
                sections[f.name] = section_type(
                    **{k: v for k, v in section.items() if k in known}
                )
            except TypeError as exc:
                raise ConfigError(f"Invalid [{f.name}] section: {exc}") from exc
        return cls(**sections)
