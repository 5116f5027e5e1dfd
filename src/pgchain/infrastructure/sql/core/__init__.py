"""Core SQL utilities package."""

from .identifier import (
    qualify_table,
    quote_column_list,
    quote_identifier,
    validate_column_list,
    validate_identifier,
)
from .limits import validate_limit, validate_port, validate_range
from .parameters import ParameterCollector, adapt_param

__all__ = [
    "ParameterCollector",
    "adapt_param",
    "qualify_table",
    "quote_column_list",
    "quote_identifier",
    "validate_column_list",
    "validate_identifier",
    "validate_limit",
    "validate_port",
    "validate_range",
]
