"""Runtime configuration for the consolidation engine.

Values come from environment variables, with a ``.env`` file at the repo root
loaded first if it exists. The auto-consolidation toggle here is only the
default used when no persisted setting exists for a business line.

MyInvois settings may be scoped per business line (MYINVOIS_GREENTARGET_CLIENT_ID,
or MYINVOIS_GT_CLIENT_ID) and fall back to the shared variables (MYINVOIS_CLIENT_ID).
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_DB_PATH = REPO_ROOT / "consolidation.db"
DEFAULT_TASK_QUEUE = "einvoice-consolidation"
DEFAULT_MYINVOIS_URL = "https://preprod-api.myinvois.hasil.gov.my"

# Business lines sharing one deployment
KNOWN_COMPANIES = ("tienhock", "greentarget", "jellypolly")

# Short environment prefixes, e.g. MYINVOIS_GT_CLIENT_ID
COMPANY_ENV_ALIASES = {"greentarget": "GT", "jellypolly": "JP"}


def _company_env(company_id: str, name: str) -> Optional[str]:
    """MYINVOIS_<COMPANY>_<NAME>, falling back to the shared MYINVOIS_<NAME>."""
    prefixes = [company_id.upper()]
    if company_id in COMPANY_ENV_ALIASES:
        prefixes.append(COMPANY_ENV_ALIASES[company_id])
    for prefix in prefixes:
        scoped = os.getenv(f"MYINVOIS_{prefix}_{name}")
        if scoped:
            return scoped
    return os.getenv(f"MYINVOIS_{name}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ConsolidationConfig:
    """Settings for one business line of the consolidation engine."""
    company_id: str = "tienhock"
    db_path: Path = DEFAULT_DB_PATH
    invoice_db_path: Optional[Path] = None  # invoicing subsystem tables

    # Tax authority
    connector_type: str = "sandbox"         # "sandbox", "myinvois"
    myinvois_base_url: str = DEFAULT_MYINVOIS_URL
    myinvois_client_id: Optional[str] = None
    myinvois_client_secret: Optional[str] = None
    myinvois_timeout_seconds: int = 30
    document_renderer: Optional[str] = None  # "module:attribute" of a DocumentRenderer
    connector_settings: Dict[str, Any] = field(default_factory=dict)

    # Scheduler
    auto_consolidation_default: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Temporal
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = None
    task_queue: str = DEFAULT_TASK_QUEUE

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)

    @classmethod
    def from_env(cls, company_id: Optional[str] = None) -> "ConsolidationConfig":
        """Build configuration from environment variables."""
        company_id = company_id or os.getenv("CONSOLIDATION_COMPANY_ID", "tienhock")
        return cls(
            company_id=company_id,
            db_path=Path(os.getenv("CONSOLIDATION_DB_PATH", str(DEFAULT_DB_PATH))),
            invoice_db_path=Path(os.environ["INVOICE_DB_PATH"]) if os.getenv("INVOICE_DB_PATH") else None,
            connector_type=os.getenv("TAX_AUTHORITY_CONNECTOR", "sandbox").lower(),
            myinvois_base_url=_company_env(company_id, "BASE_URL") or DEFAULT_MYINVOIS_URL,
            myinvois_client_id=_company_env(company_id, "CLIENT_ID"),
            myinvois_client_secret=_company_env(company_id, "CLIENT_SECRET"),
            document_renderer=_company_env(company_id, "RENDERER"),
            myinvois_timeout_seconds=int(os.getenv("MYINVOIS_TIMEOUT_SECONDS", "30")),
            auto_consolidation_default=_env_bool("AUTO_CONSOLIDATION_ENABLED", False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", False),
            temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT"),
            temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            temporal_api_key=os.getenv("TEMPORAL_API_KEY"),
            task_queue=os.getenv("CONSOLIDATION_TASK_QUEUE", DEFAULT_TASK_QUEUE),
        )


def load_config(company_id: Optional[str] = None) -> ConsolidationConfig:
    """Load configuration for a business line (defaults to the env setting)."""
    return ConsolidationConfig.from_env(company_id)
