"""Command-line tools for DocHarbor."""
