"""Query engine semantic types.

Parses and canonicalizes type signatures such as ``bigint``,
``varchar(25)`` or ``decimal(12, 2)`` so table descriptions name column
types the way the query engine reports them.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

_SIGNATURE_PATTERN = re.compile(r"^\s*([a-z][a-z0-9_ ]*?)\s*(?:\(\s*([0-9,\s]*)\s*\))?\s*$")

# Base type name -> (min, max) number of integer parameters
DEFAULT_TYPES: dict[str, tuple[int, int]] = {
    "boolean": (0, 0),
    "tinyint": (0, 0),
    "smallint": (0, 0),
    "integer": (0, 0),
    "bigint": (0, 0),
    "real": (0, 0),
    "double": (0, 0),
    "decimal": (0, 2),
    "varchar": (0, 1),
    "char": (0, 1),
    "varbinary": (0, 0),
    "json": (0, 0),
    "date": (0, 0),
    "time": (0, 1),
    "timestamp": (0, 1),
    "timestamp with time zone": (0, 1),
    "ipaddress": (0, 0),
    "uuid": (0, 0),
}


@dataclass(frozen=True)
class SemanticType:
    """A parsed type signature.

    Attributes:
        base: Lower-cased base type name.
        parameters: Integer type parameters (length, precision, scale).
    """

    base: str
    parameters: tuple[int, ...] = ()

    def __str__(self) -> str:
        if not self.parameters:
            return self.base
        if self.base == "timestamp with time zone":
            return f"timestamp({self.parameters[0]}) with time zone"
        params = ",".join(str(p) for p in self.parameters)
        return f"{self.base}({params})"


class TypeRegistry:
    """Known type names of the query engine.

    Example:
        >>> registry = TypeRegistry.default()
        >>> str(registry.parse("VARCHAR( 25 )"))
        'varchar(25)'
    """

    def __init__(self, types: dict[str, tuple[int, int]]) -> None:
        self._types = dict(types)

    @classmethod
    def default(cls) -> TypeRegistry:
        """Registry of the query engine's built-in scalar types."""
        return cls(DEFAULT_TYPES)

    @property
    def names(self) -> Iterable[str]:
        return sorted(self._types)

    def parse(self, signature: str) -> SemanticType:
        """Parse a type signature.

        Args:
            signature: Type signature, case-insensitive.

        Returns:
            The canonical SemanticType.

        Raises:
            ValueError: If the base type is unknown or the parameters are
                invalid for it.
        """
        text = _normalize_time_zone(signature.lower())
        match = _SIGNATURE_PATTERN.match(text)
        if match is None:
            msg = f"Malformed type signature: {signature!r}"
            raise ValueError(msg)

        base = " ".join(match.group(1).split())
        if base not in self._types:
            msg = f"Unknown type: {signature!r}"
            raise ValueError(msg)

        raw_params = match.group(2)
        parameters: tuple[int, ...] = ()
        if raw_params is not None:
            parts = [p.strip() for p in raw_params.split(",")]
            if not all(p.isdigit() for p in parts):
                msg = f"Malformed type parameters: {signature!r}"
                raise ValueError(msg)
            parameters = tuple(int(p) for p in parts)

        low, high = self._types[base]
        if not low <= len(parameters) <= high:
            msg = f"Type {base} takes {low} to {high} parameters, got {len(parameters)}"
            raise ValueError(msg)
        if base == "decimal" and len(parameters) == 2 and parameters[1] > parameters[0]:
            msg = f"Decimal scale exceeds precision: {signature!r}"
            raise ValueError(msg)

        return SemanticType(base=base, parameters=parameters)


def _normalize_time_zone(text: str) -> str:
    # "timestamp(3) with time zone" carries its precision mid-signature
    match = re.match(r"^\s*timestamp\s*\(\s*(\d+)\s*\)\s+with\s+time\s+zone\s*$", text)
    if match is not None:
        return f"timestamp with time zone({match.group(1)})"
    return text
