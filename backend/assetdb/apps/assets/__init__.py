"""
Assets module.

Sites and the asset (slot) records whose identity the RMA engine rewrites.
"""

from . import models  # noqa: F401
