"""Command-line interface for Cryptodial."""
