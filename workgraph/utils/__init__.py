"""Shared helpers for workgraph."""
