"""GCDR sync engine: one-way ThingsBoard → GCDR registry synchronisation."""

__version__ = "0.1.0"
