"""mapverify - source map verification and composition engine."""

__version__ = "0.1.0"
