"""cellttl core: shared types, config, errors, logging and key/value encoding."""
from __future__ import annotations

from cellttl_core._version import __version__
from cellttl_core.config import (
    BackendConfig,
    CellTTLConfig,
    StoreConfig,
    TTLConfig,
)
from cellttl_core.errors import (
    BackendError,
    BackendUnavailableError,
    CellTTLError,
    ConfigError,
    MarkerFormatError,
    PartialWriteError,
    RowNotFoundError,
    TableNotFoundError,
)
from cellttl_core.logging import get_logger, setup_logging
from cellttl_core.types import (
    Cell,
    FamilyRule,
    Marker,
    MarkerOwner,
    RowResult,
    Scalar,
    StoredValue,
    Structured,
    SweepReport,
    SweepState,
    now_ms,
)

__all__ = [
    # Config
    "BackendConfig",
    # Errors
    "BackendError",
    "BackendUnavailableError",
    # Types
    "Cell",
    "CellTTLConfig",
    "CellTTLError",
    "ConfigError",
    "FamilyRule",
    "Marker",
    "MarkerFormatError",
    "MarkerOwner",
    "PartialWriteError",
    "RowNotFoundError",
    "RowResult",
    "Scalar",
    "StoreConfig",
    "StoredValue",
    "Structured",
    "SweepReport",
    "SweepState",
    "TTLConfig",
    "TableNotFoundError",
    # Version
    "__version__",
    # Logging
    "get_logger",
    "now_ms",
    "setup_logging",
]
