"""Read-only web UI for a local git repository."""

__version__ = "0.1.0"
