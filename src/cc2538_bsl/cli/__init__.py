"""
cc2538-bsl Command-Line Interface
=================================

This package provides the `cc2538-bsl` tool, a Click-based CLI for
identifying, erasing, reading and programming a CC2538 through its
ROM serial bootloader.
"""

__all__ = ["bsl"]
