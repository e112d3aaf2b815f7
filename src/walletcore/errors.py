"""
Wallet error taxonomy.

Every failure raised by the wallet core derives from WalletError and carries the
offending field and value (when one exists) so callers can correct input and retry.
"""

from __future__ import annotations

from typing import Any


class WalletError(Exception):
    """Base class for all wallet core errors."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value


class ValidationError(WalletError):
    """Malformed descriptor, address, path, PSBT bytes or builder input."""


class UnknownUtxoError(ValidationError):
    """An outpoint the wallet does not know was requested as a must-spend input."""


class UnexpectedUnsignedTxError(ValidationError):
    """Two PSBTs being combined do not share the same unsigned transaction."""

    def __init__(self, expected: str, found: str):
        super().__init__(
            f"Cannot combine PSBTs for different transactions: {expected} != {found}",
            field="txid",
            value=found,
        )
        self.expected = expected
        self.found = found


class FeeRateTooLowError(ValidationError):
    """A replacement does not pay enough over the transaction it replaces."""

    def __init__(self, message: str, required: float, value: float):
        super().__init__(message, field="fee_rate", value=value)
        self.required = required


class InsufficientFundsError(WalletError):
    """Selected or available inputs cannot cover outputs plus fee."""

    def __init__(self, needed: int, available: int):
        super().__init__(
            f"Insufficient funds: need {needed} sats, have {available} sats",
            field="amount",
            value=needed,
        )
        self.needed = needed
        self.available = available


class NoRecipientsError(WalletError):
    """A transaction was requested without any recipient or drain target."""

    def __init__(self) -> None:
        super().__init__("Transaction has no recipients and no drain_to script")


class FeeEstimationFailedError(WalletError):
    """Fee and size did not converge within the iteration bound."""

    def __init__(self, iterations: int):
        super().__init__(
            f"Fee estimation did not converge after {iterations} iterations",
            field="max_fee_iterations",
            value=iterations,
        )
        self.iterations = iterations


class MismatchedNetworkError(WalletError):
    """An address or key belongs to a different network than the wallet."""

    def __init__(self, expected: str, found: str, value: Any = None):
        super().__init__(
            f"Network mismatch: expected {expected}, found {found}",
            field="network",
            value=value,
        )
        self.expected = expected
        self.found = found


class IncompletePsbtError(WalletError):
    """A PSBT input does not meet its script's signature requirement."""

    def __init__(self, input_index: int, reason: str = "missing signatures"):
        super().__init__(
            f"PSBT input {input_index} is not finalized: {reason}",
            field="inputs",
            value=input_index,
        )
        self.input_index = input_index


class IrreplaceableTransactionError(WalletError):
    """The transaction cannot be replaced (confirmed, foreign or not signaling)."""

    def __init__(self, txid: str, reason: str):
        super().__init__(f"Transaction {txid} cannot be replaced: {reason}", field="txid", value=txid)
        self.txid = txid


class TransactionNotFoundError(IrreplaceableTransactionError):
    """The wallet has no record of the transaction."""

    def __init__(self, txid: str):
        super().__init__(txid, "not found in wallet history")


class GenericError(WalletError):
    """Wraps failures of the underlying cryptographic primitives."""
