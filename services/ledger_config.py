"""
============================================================================
Arbitrage Ledger - Configuration
============================================================================

Environment-driven configuration for the ledger service, the rate service
and the reporting job.

ENVIRONMENT VARIABLES:
    - LEDGER_DATABASE_URL: SQLAlchemy URL (default: sqlite:///./ledger.db)
    - LEDGER_APP_URL: Public app URL used by the preview redirect
    - LEDGER_RATE_TIMEOUT_SECONDS: Outbound rate request timeout (default: 10)
    - LEDGER_COINGECKO_URL: Primary USDT price endpoint
    - LEDGER_FRANKFURTER_URL: Forex fallback endpoint
    - LEDGER_DEFAULT_ACTOR: Actor id recorded in audit entries when the
      caller does not supply one (default: system)

ERROR CODES:
    - CFG-001: Configuration invalid

============================================================================
"""

from decimal import Decimal, InvalidOperation
from typing import List, Optional
from dataclasses import dataclass
import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class LedgerConfigErrorCode:
    """Configuration error codes for audit logging."""
    CONFIG_INVALID = "CFG-001"


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_DATABASE_URL = "sqlite:///./ledger.db"
DEFAULT_APP_URL = "http://localhost:8080"
DEFAULT_RATE_TIMEOUT_SECONDS = Decimal("10")
DEFAULT_COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_FRANKFURTER_URL = "https://api.frankfurter.app/latest"
DEFAULT_ACTOR = "system"


class LedgerConfigurationError(Exception):
    """Raised when ledger configuration is invalid."""

    def __init__(self, message: str, error_code: str = LedgerConfigErrorCode.CONFIG_INVALID):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# LedgerConfig Class
# =============================================================================

@dataclass
class LedgerConfig:
    """
    Ledger service configuration.

    Input Constraints: rate_timeout_seconds must be positive; URLs non-empty
    Side Effects: Logs configuration on load
    """
    database_url: str = DEFAULT_DATABASE_URL
    app_url: str = DEFAULT_APP_URL
    rate_timeout_seconds: Decimal = DEFAULT_RATE_TIMEOUT_SECONDS
    coingecko_url: str = DEFAULT_COINGECKO_URL
    frankfurter_url: str = DEFAULT_FRANKFURTER_URL
    default_actor: str = DEFAULT_ACTOR

    def validate(self) -> None:
        """
        Raises:
            LedgerConfigurationError: If any value is unusable
        """
        errors: List[str] = []

        if self.rate_timeout_seconds <= Decimal("0"):
            errors.append(
                f"LEDGER_RATE_TIMEOUT_SECONDS must be positive, got: {self.rate_timeout_seconds}"
            )
        for name, value in (
            ("LEDGER_DATABASE_URL", self.database_url),
            ("LEDGER_APP_URL", self.app_url),
            ("LEDGER_COINGECKO_URL", self.coingecko_url),
            ("LEDGER_FRANKFURTER_URL", self.frankfurter_url),
            ("LEDGER_DEFAULT_ACTOR", self.default_actor),
        ):
            if not value or not value.strip():
                errors.append(f"{name} must not be empty")

        if errors:
            error_msg = "Ledger configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{LedgerConfigErrorCode.CONFIG_INVALID}] {error_msg}")
            raise LedgerConfigurationError(error_msg)

        logger.info(
            f"[LEDGER-CONFIG] Configuration validated | "
            f"app_url={self.app_url} | "
            f"rate_timeout_seconds={self.rate_timeout_seconds} | "
            f"default_actor={self.default_actor}"
        )

    @property
    def rate_timeout(self) -> float:
        """Timeout in the float seconds httpx expects."""
        return float(self.rate_timeout_seconds)

    @classmethod
    def from_environment(cls, validate: bool = True) -> "LedgerConfig":
        """
        Load configuration from environment variables (and a .env file).

        Args:
            validate: Whether to validate configuration after loading

        Raises:
            LedgerConfigurationError: If validation fails
        """
        load_dotenv()

        timeout_str = os.environ.get(
            "LEDGER_RATE_TIMEOUT_SECONDS", str(DEFAULT_RATE_TIMEOUT_SECONDS)
        )
        try:
            rate_timeout_seconds = Decimal(timeout_str.strip())
        except InvalidOperation:
            logger.warning(
                f"[LEDGER-CONFIG] Invalid LEDGER_RATE_TIMEOUT_SECONDS value: {timeout_str}, "
                f"using default: {DEFAULT_RATE_TIMEOUT_SECONDS}"
            )
            rate_timeout_seconds = DEFAULT_RATE_TIMEOUT_SECONDS

        config = cls(
            database_url=os.environ.get("LEDGER_DATABASE_URL", DEFAULT_DATABASE_URL).strip(),
            app_url=os.environ.get("LEDGER_APP_URL", DEFAULT_APP_URL).strip().rstrip("/"),
            rate_timeout_seconds=rate_timeout_seconds,
            coingecko_url=os.environ.get("LEDGER_COINGECKO_URL", DEFAULT_COINGECKO_URL).strip(),
            frankfurter_url=os.environ.get(
                "LEDGER_FRANKFURTER_URL", DEFAULT_FRANKFURTER_URL
            ).strip(),
            default_actor=os.environ.get("LEDGER_DEFAULT_ACTOR", DEFAULT_ACTOR).strip(),
        )

        logger.info(
            f"[LEDGER-CONFIG] Loading configuration from environment | "
            f"LEDGER_APP_URL={config.app_url} | "
            f"LEDGER_RATE_TIMEOUT_SECONDS={config.rate_timeout_seconds}"
        )

        if validate:
            config.validate()
        return config


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance: Optional[LedgerConfig] = None


def get_ledger_config(validate: bool = True) -> LedgerConfig:
    """Lazily load and cache the process-wide configuration."""
    global _config_instance

    if _config_instance is None:
        _config_instance = LedgerConfig.from_environment(validate=validate)
    return _config_instance


def reset_ledger_config() -> None:
    """Drop the cached configuration (tests)."""
    global _config_instance
    _config_instance = None
    logger.debug("[LEDGER-CONFIG] Configuration instance reset")


__all__ = [
    "LedgerConfigErrorCode",
    "LedgerConfigurationError",
    "LedgerConfig",
    "get_ledger_config",
    "reset_ledger_config",
]
