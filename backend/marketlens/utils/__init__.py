# Shared utilities — validators
from marketlens.utils.validators import parse_at, validate_history, validate_price, validate_symbol

__all__ = [
    "parse_at",
    "validate_history",
    "validate_price",
    "validate_symbol",
]
