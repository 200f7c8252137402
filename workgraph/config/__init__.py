"""Configuration for workgraph."""
