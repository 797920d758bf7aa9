"""Entity validation."""

from trade_insight.validation.validator import DataValidator, ValidationResult

__all__ = ["DataValidator", "ValidationResult"]
