"""
Deployment colors.
"""
from enum import Enum


class Color(str, Enum):
    """One of the two interchangeable deployment identities."""
    BLUE = "blue"
    GREEN = "green"

    @property
    def service(self) -> str:
        """Platform service name of this color's replica group."""
        return f"app_{self.value}"

    def __str__(self) -> str:
        return self.value


def other(color: Color) -> Color:
    return Color.GREEN if color is Color.BLUE else Color.BLUE


def parse_color(value: str) -> Color:
    """Parse 'blue'/'green' (case-insensitive); ValueError otherwise."""
    v = str(value).strip().lower()
    try:
        return Color(v)
    except ValueError:
        raise ValueError(f"color must be 'blue' or 'green', got: {value!r}") from None
