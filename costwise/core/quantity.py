"""
Resource quantity model for costwise.

Parses Kubernetes-style resource strings ("500m", "2", "4Gi", "10G") into a
small value object that keeps compute in millicores and memory or storage in
bytes, and formats arithmetic results back into the most compact unit.

Parsing is lenient: text that cannot be understood becomes a zero quantity
and a warning is logged, so a single odd value never aborts an analysis.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

MIB = 1024**2
GIB = 1024**3

# Binary suffixes are matched before the single-letter decimal ones
BINARY_MULTIPLIERS = {
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
}

DECIMAL_MULTIPLIERS = {
    "k": 1000,
    "K": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "P": 1000**5,
    "E": 1000**6,
}

NUMBER_PATTERN = re.compile(r"^(\d+(?:\.\d*)?|\.\d+)$")


def _to_decimal(number: str) -> Optional[Decimal]:
    """Convert a plain non-negative number string to Decimal."""
    if not NUMBER_PATTERN.match(number):
        return None
    try:
        return Decimal(number)
    except InvalidOperation:
        return None


def _normalize_text(value: Any) -> str:
    """Turn a YAML scalar into quantity text."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float):
        # YAML gives 0.5 for "cpu: 0.5"; "g" avoids a trailing ".0"
        return format(value, "g")
    return str(value).strip()


@dataclass(frozen=True)
class ResourceQuantity:
    """
    A parsed resource amount.

    Compute amounts live in ``milli`` and memory or storage amounts live in
    ``byte_count``. ``text`` is the original spelling for parsed values and
    the canonical spelling for values produced by arithmetic.
    """
    milli: int = 0
    byte_count: int = 0
    text: str = "0"

    @classmethod
    def zero(cls) -> "ResourceQuantity":
        return cls()

    @classmethod
    def from_millis(cls, milli: int) -> "ResourceQuantity":
        """Build a compute quantity from millicores."""
        return cls(milli=max(int(milli), 0)).canonical()

    @classmethod
    def from_bytes(cls, byte_count: int) -> "ResourceQuantity":
        """Build a memory or storage quantity from bytes."""
        return cls(byte_count=max(int(byte_count), 0)).canonical()

    @classmethod
    def parse(cls, value: Any) -> "ResourceQuantity":
        """
        Parse a resource string into a quantity.

        Suffix priority is ``m`` (millicores), then binary byte suffixes
        (Ki, Mi, Gi, Ti, Pi, Ei), then decimal byte suffixes (K, M, G, T, P, E).
        A bare number is taken as cores and converted to millicores.
        Fractional results truncate toward zero.

        Args:
            value: Quantity text, or a numeric YAML scalar.

        Returns:
            The parsed quantity. Unparsable input yields a zero quantity.
        """
        text = _normalize_text(value)
        if not text:
            return cls()

        if text.endswith("m"):
            number = _to_decimal(text[:-1])
            if number is not None:
                return cls(milli=int(number), text=text)
        elif text[-2:] in BINARY_MULTIPLIERS:
            number = _to_decimal(text[:-2])
            if number is not None:
                return cls(byte_count=int(number * BINARY_MULTIPLIERS[text[-2:]]), text=text)
        elif text[-1] in DECIMAL_MULTIPLIERS:
            number = _to_decimal(text[:-1])
            if number is not None:
                return cls(byte_count=int(number * DECIMAL_MULTIPLIERS[text[-1]]), text=text)
        else:
            number = _to_decimal(text)
            if number is not None:
                return cls(milli=int(number * 1000), text=text)

        logger.warning(f"Could not parse resource quantity: {text}")
        return cls(text=text)

    @classmethod
    def parse_bytes(cls, value: Any) -> "ResourceQuantity":
        """
        Parse a memory or storage value.

        Identical to ``parse`` except that a bare number is a raw byte count,
        which is how Kubernetes reads "memory: 1073741824".
        """
        text = _normalize_text(value)
        number = _to_decimal(text) if text else None
        if number is not None:
            return cls(byte_count=int(number), text=text)
        return cls.parse(value)

    @property
    def cores(self) -> float:
        """Compute amount in cores."""
        return self.milli / 1000.0

    @property
    def gib(self) -> float:
        """Byte amount in GiB."""
        return self.byte_count / GIB

    @property
    def is_zero(self) -> bool:
        return self.milli == 0 and self.byte_count == 0

    def add(self, other: "ResourceQuantity") -> "ResourceQuantity":
        """
        Add two quantities and re-derive the text form.

        Args:
            other: Quantity to add.

        Returns:
            A new quantity; neither operand is modified.
        """
        total = ResourceQuantity(
            milli=self.milli + other.milli,
            byte_count=self.byte_count + other.byte_count,
            text=self.text if not self.is_zero else other.text,
        )
        return total.canonical()

    __add__ = add

    def canonical(self) -> "ResourceQuantity":
        """Return the same amount spelled in its most compact unit."""
        if self.milli > 0 and self.byte_count == 0:
            if self.milli % 1000 == 0:
                text = str(self.milli // 1000)
            else:
                text = f"{self.milli}m"
        elif self.byte_count > 0 and self.milli == 0:
            text = str(self.byte_count)
            for suffix, size in reversed(BINARY_MULTIPLIERS.items()):
                if self.byte_count % size == 0:
                    text = f"{self.byte_count // size}{suffix}"
                    break
        elif self.is_zero:
            text = "0"
        else:
            # Mixed representations have no single compact spelling
            text = self.text
        return ResourceQuantity(milli=self.milli, byte_count=self.byte_count, text=text)

    def __str__(self) -> str:
        return self.text


def format_millicores(milli: float) -> str:
    """Format a compute amount as whole millicores, e.g. "650m"."""
    return f"{milli:.0f}m"


def format_mebibytes(byte_count: float) -> str:
    """Format a byte amount as whole MiB, e.g. "2591Mi"."""
    return f"{byte_count / MIB:.0f}Mi"


def sum_quantities(quantities) -> ResourceQuantity:
    """Add up an iterable of quantities."""
    total = ResourceQuantity.zero()
    for quantity in quantities:
        total = total.add(quantity)
    return total
