class VerifierError(RuntimeError):
    pass


class InvalidMessageKind(VerifierError):
    """A message other than external-in was handed to canonicalization."""


class InvalidCorrelationToken(VerifierError):
    """A stored correlation token is neither a digest nor a message BOC."""


class LedgerUnavailable(VerifierError):
    """Transient failure talking to the ledger RPC."""


class DatastoreError(VerifierError):
    pass


class NotificationError(VerifierError):
    pass
