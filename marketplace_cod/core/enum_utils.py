"""
Enum Utilities for VARCHAR-based Status Fields

• Database: VARCHAR(30) - NOT a native ENUM type
• SQLAlchemy: String(30) with Mapped[str]
• Python: str Enum for validation and comparisons
• Case: All enum values stored in UPPERCASE
"""

from enum import Enum
from typing import Type


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for VARCHAR column.

    Examples:
        >>> enum_comment(PayoutStatus)
        'PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED'
    """
    return ", ".join(e.value for e in enum_class)
