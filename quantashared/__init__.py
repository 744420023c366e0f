"""Query trees, intermediate results, table schemas, sampling and a schema catalog for a distributed bitmap index."""

__version__ = "0.1.0"