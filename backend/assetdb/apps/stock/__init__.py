"""
Stock movement ledger.

Append-only record of every asset status or location change.
"""

from . import models  # noqa: F401
