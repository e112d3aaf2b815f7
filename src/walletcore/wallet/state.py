"""
Wallet-state collaborator interface.

The core never persists anything itself: UTXOs, history and derivation indexes are
read from (and index reveals written to) a WalletState implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from walletcore.bitcoin.transaction import OutPoint
from walletcore.models import KeychainKind, LocalUtxo, TransactionDetails


class WalletState(ABC):
    """
    Abstract wallet state.
    Implementations are typically backed by a database kept in sync with the chain.
    """

    @abstractmethod
    def list_utxos(self) -> list[LocalUtxo]:
        """Unspent wallet outputs"""

    @abstractmethod
    def get_utxo(self, outpoint: OutPoint) -> LocalUtxo | None:
        """A wallet output by outpoint, spent or not"""

    @abstractmethod
    def get_tx(self, txid: str) -> TransactionDetails | None:
        """A wallet transaction by txid"""

    @abstractmethod
    def list_transactions(self) -> list[TransactionDetails]:
        """All wallet transactions"""

    @abstractmethod
    def last_revealed_index(self, keychain: KeychainKind) -> int | None:
        """Highest derivation index handed out so far, None if none"""

    @abstractmethod
    def reveal_index(self, keychain: KeychainKind, index: int) -> None:
        """Record that `index` has been handed out"""

    @abstractmethod
    def is_used(self, keychain: KeychainKind, index: int) -> bool:
        """Whether any transaction has paid to the script at `index`"""

    @abstractmethod
    def mark_used(self, keychain: KeychainKind, index: int) -> None:
        """Record that the script at `index` has received funds"""

    def next_index(self, keychain: KeychainKind) -> int:
        """Next derivation index that has not been handed out"""
        last = self.last_revealed_index(keychain)
        return 0 if last is None else last + 1


class MemoryWalletState(WalletState):
    """In-memory WalletState, for tests and short-lived wallets."""

    def __init__(self) -> None:
        self.utxos: dict[OutPoint, LocalUtxo] = {}
        self.transactions: dict[str, TransactionDetails] = {}
        self._revealed: dict[KeychainKind, int] = {}
        self._used: dict[KeychainKind, set[int]] = {
            KeychainKind.EXTERNAL: set(),
            KeychainKind.INTERNAL: set(),
        }

    def insert_utxo(self, utxo: LocalUtxo) -> None:
        self.utxos[utxo.outpoint] = utxo

    def insert_tx(self, details: TransactionDetails) -> None:
        self.transactions[details.txid] = details

    def spend(self, outpoint: OutPoint) -> None:
        if outpoint in self.utxos:
            self.utxos[outpoint].is_spent = True

    def list_utxos(self) -> list[LocalUtxo]:
        return [utxo for utxo in self.utxos.values() if not utxo.is_spent]

    def get_utxo(self, outpoint: OutPoint) -> LocalUtxo | None:
        return self.utxos.get(outpoint)

    def get_tx(self, txid: str) -> TransactionDetails | None:
        return self.transactions.get(txid)

    def list_transactions(self) -> list[TransactionDetails]:
        return list(self.transactions.values())

    def last_revealed_index(self, keychain: KeychainKind) -> int | None:
        return self._revealed.get(keychain)

    def reveal_index(self, keychain: KeychainKind, index: int) -> None:
        current = self._revealed.get(keychain)
        if current is None or index > current:
            self._revealed[keychain] = index

    def is_used(self, keychain: KeychainKind, index: int) -> bool:
        return index in self._used[keychain]

    def mark_used(self, keychain: KeychainKind, index: int) -> None:
        self._used[keychain].add(index)
