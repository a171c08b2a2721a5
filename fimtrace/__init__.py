"""fimtrace - File integrity monitoring with audit-based change attribution."""

__version__ = "0.1.0"
