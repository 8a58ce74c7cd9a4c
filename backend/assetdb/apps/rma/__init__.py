"""
RMA module.

Return-merchandise cases: a repair track and a replacement track that both
have to finish, plus the slot/spare identity swap on replacement install.
"""

from . import models  # noqa: F401
