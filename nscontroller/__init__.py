"""nscontroller: namespace-driven label propagation and network isolation."""

__version__ = "0.1.0"
