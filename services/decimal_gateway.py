# ============================================================================
# Arbitrage Ledger
# Decimal Gateway
# ============================================================================
#
# Purpose: Every amount and rate entering the ledger passes through here and
#          leaves as decimal.Decimal.
#
#   - LYD values use 2 decimal places (0.01)
#   - USDT and fiat quantities use 8 decimal places (0.00000001)
#   - Rates use 6 decimal places (0.000001)
#
# Two conversion flavours exist:
#   - to_decimal():     strict, raises ValueError (API / config boundaries)
#   - coerce_decimal(): lenient, never raises, missing/non-finite -> 0
#                       (metrics engine inputs)
#
# Error Codes:
#   - LEDGER-DEC-001: Decimal conversion failed
#
# ============================================================================

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, Union, Any
import logging

logger = logging.getLogger(__name__)

Numeric = Union[Decimal, str, int, float, None]

ZERO = Decimal("0")


class DecimalGateway:
    """
    Central conversion layer ensuring all financial data uses decimal.Decimal
    with Banker's Rounding (ROUND_HALF_EVEN).

    Example Usage:
        gateway = DecimalGateway()

        cost = gateway.to_lyd("7500.004")            # Decimal('7500.00')
        qty = gateway.to_usdt(1229.5081967213115)    # Decimal('1229.50819672')
        rate = gateway.coerce_decimal(float("nan"))  # Decimal('0')
    """

    LYD_PRECISION = Decimal('0.01')
    USDT_PRECISION = Decimal('0.00000001')
    RATE_PRECISION = Decimal('0.000001')

    def to_decimal(
        self,
        value: Numeric,
        precision: Optional[Decimal] = None,
        correlation_id: Optional[str] = None
    ) -> Decimal:
        """
        Convert a numeric value to Decimal, optionally quantized.

        Args:
            value: Numeric value to convert (Decimal, str, int, float, None)
            precision: Quantization step (None keeps full precision)
            correlation_id: Audit trail identifier

        Returns:
            Decimal value; None becomes zero

        Raises:
            ValueError: If value cannot be converted or is not finite
        """
        if value is None:
            result = ZERO
        else:
            try:
                # Always via string to avoid binary float artefacts
                result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
            except (InvalidOperation, ValueError, TypeError) as e:
                logger.error(
                    f"[LEDGER-DEC-001] Decimal conversion failed | "
                    f"value={value!r} | type={type(value).__name__} | "
                    f"correlation_id={correlation_id} | error={e}"
                )
                raise ValueError(
                    f"LEDGER-DEC-001: Cannot convert '{value}' to Decimal"
                ) from e

        if not result.is_finite():
            logger.error(
                f"[LEDGER-DEC-001] Non-finite value rejected | "
                f"value={value!r} | correlation_id={correlation_id}"
            )
            raise ValueError(f"LEDGER-DEC-001: '{value}' is not a finite number")

        if precision is not None:
            result = result.quantize(precision, rounding=ROUND_HALF_EVEN)
        return result

    def coerce_decimal(self, value: Any) -> Decimal:
        """
        Lenient conversion: anything missing, malformed or non-finite is zero.

        Booleans are rejected as numbers (a stray True is not 1 LYD).
        """
        if value is None or isinstance(value, bool):
            return ZERO
        try:
            result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            return ZERO
        if not result.is_finite():
            return ZERO
        return result

    def to_lyd(self, value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
        """Convert value to LYD precision (2 decimal places)."""
        return self.to_decimal(value, self.LYD_PRECISION, correlation_id)

    def to_usdt(self, value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
        """Convert value to USDT precision (8 decimal places)."""
        return self.to_decimal(value, self.USDT_PRECISION, correlation_id)

    def to_rate(self, value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
        """Convert value to rate precision (6 decimal places)."""
        return self.to_decimal(value, self.RATE_PRECISION, correlation_id)


# ============================================================================
# Module-level convenience functions
# ============================================================================

_gateway = DecimalGateway()

LYD_PRECISION = DecimalGateway.LYD_PRECISION
USDT_PRECISION = DecimalGateway.USDT_PRECISION
RATE_PRECISION = DecimalGateway.RATE_PRECISION


def to_decimal(
    value: Numeric,
    precision: Optional[Decimal] = None,
    correlation_id: Optional[str] = None
) -> Decimal:
    """Module-level convenience function for strict Decimal conversion."""
    return _gateway.to_decimal(value, precision, correlation_id)


def coerce_decimal(value: Any) -> Decimal:
    """Module-level convenience function for lenient Decimal conversion."""
    return _gateway.coerce_decimal(value)


def to_lyd(value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
    """Module-level convenience function for LYD conversion."""
    return _gateway.to_lyd(value, correlation_id)


def to_usdt(value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
    """Module-level convenience function for USDT conversion."""
    return _gateway.to_usdt(value, correlation_id)


def to_rate(value: Numeric, correlation_id: Optional[str] = None) -> Decimal:
    """Module-level convenience function for rate conversion."""
    return _gateway.to_rate(value, correlation_id)
