"""Configuration loader and validation for ledger synchronization settings."""

from pathlib import Path
from typing import Any, Literal, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_LINK_PREDICATES = [
    {"name": "account_link", "field": "accountId", "source": "account"},
    {"name": "owning_user", "field": "userId", "source": "user"},
    {"name": "source_account", "field": "fromAccount", "source": "account"},
    {"name": "destination_account", "field": "toAccount", "source": "account"},
]

DEFAULT_DEPOSIT_DESCRIPTIONS = [
    "Salary Payment",
    "Direct Deposit",
    "Investment Return",
    "Refund",
    "Freelance Payment",
]

DEFAULT_WITHDRAWAL_DESCRIPTIONS = [
    "ATM Withdrawal",
    "Purchase",
    "Bill Payment",
    "Transfer Out",
    "Fee",
]


class StoreConfig(BaseModel):
    """Configuration for the ledger store backend."""

    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "ledger.db"
    accounts_collection: str = "accounts"
    transactions_collection: str = "transactions"
    users_collection: str = "users"
    user_account_fallback: bool = True
    timeout_seconds: float = 30.0


class LinkPredicateConfig(BaseModel):
    """A document field that links a transaction to an account."""

    name: str
    field: str
    source: Literal["account", "user"] = "account"
    enabled: bool = True


class CollectorConfig(BaseModel):
    """Configuration for transaction collection."""

    link_predicates: list[LinkPredicateConfig] = Field(
        default_factory=lambda: [LinkPredicateConfig(**p) for p in DEFAULT_LINK_PREDICATES]
    )


class SynthesisConfig(BaseModel):
    """Configuration for synthetic history generation."""

    max_generated_entries: int = 20
    opening_deposit_ratio: float = 0.6
    opening_deposit_cap: float = 5000.0
    opening_deposit_days_ago: int = 30
    history_window_days: int = 25
    deposit_range: tuple[float, float] = (100.0, 2100.0)
    withdrawal_range: tuple[float, float] = (50.0, 550.0)
    seed: Optional[int] = None
    deposit_descriptions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DEPOSIT_DESCRIPTIONS)
    )
    withdrawal_descriptions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_WITHDRAWAL_DESCRIPTIONS)
    )

    @field_validator("deposit_range", "withdrawal_range")
    @classmethod
    def _check_range(cls, value: tuple[float, float]) -> tuple[float, float]:
        low, high = value
        if low <= 0 or high < low:
            raise ValueError(f"invalid amount range {value}")
        return value


class ReconciliationSettings(BaseModel):
    """Global reconciliation settings."""

    tolerance: float = 0.01
    commit_attempts: int = 2
    workers: int = 1

    @field_validator("tolerance")
    @classmethod
    def _check_tolerance(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("tolerance must be positive")
        return value

    @field_validator("commit_attempts", "workers")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class SheetConfig(BaseModel):
    """Configuration for a report sheet."""

    enabled: bool = True
    name: str


class SheetsConfig(BaseModel):
    """Configuration for all report sheets."""

    summary: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Summary"))
    accounts: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Accounts"))
    created_transactions: SheetConfig = Field(
        default_factory=lambda: SheetConfig(name="Created Transactions")
    )


class ExcelOutputConfig(BaseModel):
    """Configuration for Excel output."""

    filename_template: str = "ledger_sync_report_{date}_{time}.xlsx"


class OutputConfig(BaseModel):
    """Configuration for output."""

    excel: ExcelOutputConfig = Field(default_factory=ExcelOutputConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class SyncConfig(BaseModel):
    """Main configuration model for ledger synchronization."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    synthesis: SynthesisConfig = Field(default_factory=SynthesisConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "store": {
            "backend": "sqlite",
            "path": "ledger.db",
            "accounts_collection": "accounts",
            "transactions_collection": "transactions",
            "users_collection": "users",
            "user_account_fallback": True,
            "timeout_seconds": 30.0,
        },
        "reconciliation": {
            "tolerance": 0.01,
            "commit_attempts": 2,
            "workers": 1,
        },
        "collector": {
            "link_predicates": [dict(p) for p in DEFAULT_LINK_PREDICATES],
        },
        "synthesis": {
            "max_generated_entries": 20,
            "opening_deposit_ratio": 0.6,
            "opening_deposit_cap": 5000.0,
            "opening_deposit_days_ago": 30,
            "history_window_days": 25,
            "deposit_range": [100.0, 2100.0],
            "withdrawal_range": [50.0, 550.0],
            "seed": None,
            "deposit_descriptions": list(DEFAULT_DEPOSIT_DESCRIPTIONS),
            "withdrawal_descriptions": list(DEFAULT_WITHDRAWAL_DESCRIPTIONS),
        },
        "output": {
            "excel": {
                "filename_template": "ledger_sync_report_{date}_{time}.xlsx",
            },
            "sheets": {
                "summary": {"enabled": True, "name": "Summary"},
                "accounts": {"enabled": True, "name": "Accounts"},
                "created_transactions": {"enabled": True, "name": "Created Transactions"},
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
        },
    }


def load_config(config_path: Optional[Path] = None) -> SyncConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        SyncConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file cannot be parsed or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        # Deep merge user config into defaults
        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return SyncConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Ledger balance synchronization configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
