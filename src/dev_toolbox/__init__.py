"""Command-line toolbox for reports built on flaky, rate-limited remote services."""

__version__ = "0.4.0"
