"""
humio_exporter configuration

Two inputs:
- exporter settings (Humio URL, token, listen address, ...) with defaults,
  optionally read from a YAML settings file and overridden by CLI flags
- the queries file: the list of queries to run and the gauges they feed
"""

import argparse
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from .errors import ConfigurationError
from .schemas import QueriesFile, QueryConfig

logger = logging.getLogger("humio_exporter.config")

# settings coerced when read from YAML; flags are already typed by argparse
NUMERIC_SETTINGS = {"timeout": int, "poll_interval": float}


@dataclass
class ExporterConfig:
    """Exporter settings with defaults"""
    config: Optional[str] = None
    humio_url: Optional[str] = None
    api_token: Optional[str] = None
    timeout: int = 10
    listen_address: str = ":9534"
    poll_interval: float = 5.0
    log_level: str = "INFO"
    isolate_job_failures: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExporterConfig":
        """Create config from a dictionary, ignoring unknown keys"""
        known_fields = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known_fields)
        if unknown:
            logger.warning(f"Ignoring unknown settings: {unknown}")
        values = {k: v for k, v in data.items() if k in known_fields}
        for name, cast in NUMERIC_SETTINGS.items():
            if values.get(name) is not None:
                try:
                    values[name] = cast(values[name])
                except (TypeError, ValueError):
                    raise ConfigurationError(
                        f"setting '{name}' must be a number, got {values[name]!r}") from None
        flag = values.get("isolate_job_failures")
        if flag is not None and not isinstance(flag, bool):
            raise ConfigurationError(f"setting 'isolate_job_failures' must be true or false, got {flag!r}")
        return cls(**values)

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "ExporterConfig":
        """Load settings from YAML, falling back to defaults when no file is given"""
        if path is None:
            return cls()
        if not path.exists():
            raise ConfigurationError(f"settings file not found: {path}")
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"failed to parse settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"settings file {path} must contain a mapping")
        logger.debug(f"Loaded settings from {path}: {sorted(data)}")
        return cls.from_dict(data)

    def override_with_args(self, args: argparse.Namespace) -> "ExporterConfig":
        """Override settings with command line arguments if provided"""
        for f in fields(self):
            value = getattr(args, f.name, None)
            if value is not None:
                setattr(self, f.name, value)
        return self

    def validate(self) -> "ExporterConfig":
        if not self.config:
            raise ConfigurationError("no queries file configured (--config)")
        if not self.humio_url:
            raise ConfigurationError("no Humio URL configured (--humio.url)")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.poll_interval <= 0:
            raise ConfigurationError(f"poll interval must be positive, got {self.poll_interval}")
        parse_listen_address(self.listen_address)
        return self


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Split a listen address like ":9534" or "127.0.0.1:9534" into host and port."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigurationError(f"invalid listen address '{address}', expected [host]:port")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"invalid port in listen address '{address}'") from None
    if not 0 < port_number < 65536:
        raise ConfigurationError(f"invalid port in listen address '{address}'")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


def load_queries(path: Path) -> List[QueryConfig]:
    """Load and validate the queries file."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"failed to read queries file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse queries file {path}: {e}") from e

    try:
        queries = QueriesFile.model_validate(data).queries
    except ValidationError as e:
        raise ConfigurationError(f"invalid queries file {path}: {e}") from e

    if not queries:
        raise ConfigurationError(f"no queries defined in {path}")
    logger.info("Loaded %d queries from %s", len(queries), path)
    return queries
