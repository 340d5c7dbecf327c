"""Admin console editing core: collection store, uploads and bulk actions."""

__version__ = "0.1.0"
