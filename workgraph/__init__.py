"""
workgraph - task and epic dependency graph engine
"""

__version__ = "0.1.0"
