"""nscontroller command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``nscontroller`` script).
"""

from nscontroller.cli.main import cli

__all__ = ["cli"]
