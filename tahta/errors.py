"""
Error Taxonomy

Every failure the library raises derives from TahtaError and belongs to one
of three categories, because each one asks the user to do something different:

| Category      | Meaning                                  | Corrective action          |
|---------------|------------------------------------------|----------------------------|
| relay         | Could not read/write the signaling relay | Check network / relay URL  |
| negotiation   | Relay fine, no direct connection formed  | Same network? Retry        |
| transfer      | Connected, but a payload did not make it | Resend                     |

Nothing in the library retries on its own. Recovery is the caller's job.
"""

RELAY = 'relay'
NEGOTIATION = 'negotiation'
TRANSFER = 'transfer'


class TahtaError(Exception):
    """Base class for all library errors."""
    category = 'unknown'


# === Relay (signaling I/O) ===

class RelayError(TahtaError):
    category = RELAY


class RelayWriteError(RelayError):
    """Publishing to the relay failed (network or service unavailable)."""


class RelayReadError(RelayError):
    """Reading from or subscribing to the relay failed."""


class RoomNotFoundError(RelayReadError):
    """The room id was never published to; the board is not waiting."""


# === Negotiation ===

class NegotiationError(TahtaError):
    category = NEGOTIATION


class NegotiationTimeoutError(NegotiationError):
    """The bounded wait for a connected transport elapsed."""


# === Transfer ===

class TransferError(TahtaError):
    category = TRANSFER


class TransportNotOpenError(TransferError):
    """A send was attempted before the data channel opened."""


class TransferInProgressError(TransferError):
    """A second transfer was started while one is still in flight."""


class TransferAborted(TransferError):
    """An incomplete transfer was abandoned (new header or channel closed)."""


class DataIntegrityError(TransferError):
    """Received bytes do not match what the header announced."""


FAILURE_MESSAGES = {
    RELAY: "Could not reach the relay. Check the network connection and the relay address.",
    NEGOTIATION: "Could not negotiate a direct connection to the board. "
                 "Make sure both devices are online and try again.",
    TRANSFER: "The transfer failed after connecting. Try sending again.",
}


def describe_failure(error: BaseException) -> str:
    """Map an exception to the user-facing message of its category."""
    category = getattr(error, 'category', None)
    if category in FAILURE_MESSAGES:
        return FAILURE_MESSAGES[category]
    return f"Unexpected error: {error}"
