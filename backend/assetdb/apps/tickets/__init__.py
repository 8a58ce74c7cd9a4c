"""
Tickets module.

Only the parts the RMA engine touches: the ticket row it opens a case
against and the activity feed it writes to.
"""

from . import models  # noqa: F401
