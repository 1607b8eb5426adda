"""
Mapping from provider-reported delivery states to internal message statuses.

The same mapping is applied on every entry point (send response, status
webhook, polling refresh) so a given provider state always lands on the
same internal status.
"""

STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"

INTERNAL_STATUSES = (STATUS_SENDING, STATUS_SENT, STATUS_DELIVERED, STATUS_FAILED)
TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_FAILED})
PENDING_STATUSES = (STATUS_SENDING, STATUS_SENT)

PROVIDER_STATUS_MAP = {
    "queued": STATUS_SENDING,
    "sending": STATUS_SENDING,
    "sent": STATUS_SENT,
    "delivered": STATUS_DELIVERED,
    "failed": STATUS_FAILED,
    "undelivered": STATUS_FAILED,
}

# Unknown provider states degrade to "sent" rather than failing the message
FALLBACK_STATUS = STATUS_SENT


def map_provider_status(provider_status: str) -> str:
    """
    Map a provider delivery state to one of INTERNAL_STATUSES.

    Exact, case-sensitive match on the provider token; anything not in
    PROVIDER_STATUS_MAP maps to FALLBACK_STATUS.
    """
    return PROVIDER_STATUS_MAP.get(provider_status, FALLBACK_STATUS)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, new: str) -> bool:
    """
    Whether a stored status may be replaced by `new`.

    `sending` is only ever the initial state; once a message has left it,
    a late or out-of-order report cannot move it back.
    """
    if new == current:
        return False
    return not (new == STATUS_SENDING and current != STATUS_SENDING)
