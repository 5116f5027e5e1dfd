"""
SQL parameter binding utilities.

One ``ParameterCollector`` is shared by every clause of a statement, so
placeholder numbering runs ``$1..$N`` across SET, WHERE, VALUES and
LIMIT/OFFSET without gaps or reuse.
"""

from typing import Any, List

from psycopg.types.json import Jsonb


def adapt_param(value: Any) -> Any:
    """
    Adapt dict parameters for JSONB operands.

    Lists are left alone: psycopg adapts them to PostgreSQL arrays.

    Returns:
        ``Jsonb`` wrapped value for dicts, otherwise unchanged
    """
    if isinstance(value, dict):
        return Jsonb(value)
    return value


class ParameterCollector:
    """Monotonic ``$n`` placeholder allocator plus the ordered value list.

    Example:
        >>> params = ParameterCollector()
        >>> params.add("a"), params.add("b")
        ('$1', '$2')
        >>> params.values
        ['a', 'b']
    """

    def __init__(self) -> None:
        self._values: List[Any] = []

    def add(self, value: Any) -> str:
        """Bind one value and return its placeholder."""
        self._values.append(adapt_param(value))
        return f"${len(self._values)}"

    def add_many(self, values: List[Any]) -> List[str]:
        """Bind several values in order and return their placeholders."""
        return [self.add(value) for value in values]

    @property
    def values(self) -> List[Any]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)
