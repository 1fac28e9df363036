"""Cryptodial - a custodial multi-chain crypto wallet served over USSD."""

__version__ = "0.1.0"
