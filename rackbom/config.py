"""
Runtime configuration for rackbom.

Values are read from environment variables; a ``.env`` file in the working
directory is loaded first when present. Precedence follows the usual order:
explicit constructor arguments, then environment, then defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .schema import DEFAULT_DATA_START_ROW


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_category_colors(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse coloring rules of the form ``Category=RRGGBB;Other=RRGGBB``.

    Colors are upper-cased hex without a leading '#'. Malformed entries are
    rejected so a typo does not silently paint rows black.

    Raises:
        ValueError: If an entry is not ``name=RRGGBB``
    """
    colors: Dict[str, str] = {}
    if not raw:
        return colors
    for entry in raw.split(";"):
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            raise ValueError(f"Invalid category color rule: '{entry}'")
        name, color = entry.split("=", 1)
        color = color.strip().lstrip("#").upper()
        if len(color) != 6 or any(c not in "0123456789ABCDEF" for c in color):
            raise ValueError(f"Invalid color '{color}' for category '{name.strip()}'")
        colors[name.strip()] = color
    return colors


@dataclass
class Settings:
    """Configuration consumed by the engine and its adapters."""
    plm_base_url: Optional[str] = None
    plm_session_token: Optional[str] = None
    plm_timeout_seconds: float = 30.0
    db_url: Optional[str] = None
    data_start_row: int = DEFAULT_DATA_START_ROW
    position_token: str = "pos"
    position_attribute: str = "Position"
    tracked_attributes: List[str] = field(default_factory=list)
    category_colors: Dict[str, str] = field(default_factory=dict)
    review_timeout_seconds: float = 300.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the environment (after loading ``.env``)."""
        load_dotenv(env_file)
        return cls(
            plm_base_url=os.getenv("PLM_BASE_URL"),
            plm_session_token=os.getenv("PLM_SESSION_TOKEN"),
            plm_timeout_seconds=float(os.getenv("PLM_TIMEOUT_SECONDS", "30")),
            db_url=os.getenv("RACKBOM_DB_URL"),
            data_start_row=int(os.getenv("RACKBOM_DATA_START_ROW", str(DEFAULT_DATA_START_ROW))),
            position_token=os.getenv("RACKBOM_POSITION_TOKEN", "pos"),
            position_attribute=os.getenv("RACKBOM_POSITION_ATTRIBUTE", "Position"),
            tracked_attributes=_split_list(os.getenv("RACKBOM_TRACKED_ATTRIBUTES")),
            category_colors=parse_category_colors(os.getenv("RACKBOM_CATEGORY_COLORS")),
            review_timeout_seconds=float(os.getenv("RACKBOM_REVIEW_TIMEOUT_SECONDS", "300")),
            log_level=os.getenv("RACKBOM_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> bool:
        """Ensure values needed to talk to the PLM are present."""
        missing = []
        if not self.plm_base_url:
            missing.append("PLM_BASE_URL")
        if not self.plm_session_token:
            missing.append("PLM_SESSION_TOKEN")

        if missing:
            raise EnvironmentError(f"Missing required environment variables: {', '.join(missing)}")
        if self.data_start_row < 2:
            raise EnvironmentError("RACKBOM_DATA_START_ROW must leave room for a header row")

        return True


def configure_logging(level: str = "INFO") -> None:
    """Basic console logging for scripts."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
