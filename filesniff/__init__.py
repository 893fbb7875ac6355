"""Magic file parsing, rule strength ordering and text content description."""

__version__ = "0.1.0"
__all__ = ["magic_types", "values", "parser", "loader", "textinfo"]