"""
provgraph - provenance graph storage and causality-model export
"""

__version__ = "0.3.0"
