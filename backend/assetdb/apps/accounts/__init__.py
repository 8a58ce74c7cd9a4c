"""
Accounts module.

Users, roles and capability grants consumed by the RMA engine.
"""

from . import models  # noqa: F401
