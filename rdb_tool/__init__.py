"""RDB Tool - inspect and patch RDB resource containers."""

__version__ = "0.1.0"
