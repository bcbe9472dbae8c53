"""Signals emitted by the ledger and the document review workflow.

Receivers are coroutines called with ``db``, ``ctx``, ``application`` and
``actor`` keyword arguments; they run inside the caller's unit of work.
"""

from blinker import Namespace

lifecycle_signals = Namespace()

field_verified = lifecycle_signals.signal("field-verified")
field_rejected = lifecycle_signals.signal("field-rejected")
document_approved = lifecycle_signals.signal("document-approved")


async def publish(signal, sender, **kwargs) -> list:
    replies = await signal.send_async(sender, **kwargs)
    return [reply for _, reply in replies]
