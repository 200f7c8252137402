"""CLI command modules for workgraph."""
