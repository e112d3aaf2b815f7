"""
Coin selection and fee/size resolution.

Fee depends on size and size on the selected inputs and whether a change output
exists, so selection runs as a bounded fixed-point loop.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from walletcore.bitcoin.script import dust_value
from walletcore.bitcoin.transaction import OutPoint, Transaction, TxIn, TxOut
from walletcore.constants import DUST_RELAY_FEE, MAX_FEE_ITERATIONS, WITNESS_SCALE_FACTOR
from walletcore.errors import FeeEstimationFailedError, InsufficientFundsError
from walletcore.models import AbsoluteFee, FeeRate, LocalUtxo


@dataclass
class WeightedUtxo:
    """A spendable output plus what it costs to spend it."""

    outpoint: OutPoint
    txout: TxOut
    satisfaction_weight: int
    is_segwit: bool
    local: LocalUtxo | None = None

    @property
    def value(self) -> int:
        return self.txout.value

    @property
    def is_foreign(self) -> bool:
        return self.local is None


@dataclass
class CoinSelectionResult:
    selected: list[WeightedUtxo]
    fee: int
    # Value of the drain/change output; 0 when none is created
    drain_value: int
    weight: int

    @property
    def selected_amount(self) -> int:
        return sum(utxo.value for utxo in self.selected)

    @property
    def has_drain_output(self) -> bool:
        return self.drain_value > 0

    @property
    def vsize(self) -> int:
        return -(-self.weight // WITNESS_SCALE_FACTOR)


def estimate_weight(inputs: list[WeightedUtxo], outputs: list[TxOut]) -> int:
    """Signed weight of a transaction spending `inputs` into `outputs`."""
    skeleton = Transaction(
        inputs=[TxIn(utxo.outpoint) for utxo in inputs],
        outputs=outputs,
    )
    return skeleton.estimate_weight([(u.satisfaction_weight, u.is_segwit) for u in inputs])


def fee_for_weight(fee_policy: FeeRate | AbsoluteFee, weight: int) -> int:
    if isinstance(fee_policy, AbsoluteFee):
        return fee_policy.amount
    return fee_policy.fee_wu(weight)


def select_coins(
    must_use: list[WeightedUtxo],
    may_use: list[WeightedUtxo],
    outputs: list[TxOut],
    drain_script: bytes,
    fee_policy: FeeRate | AbsoluteFee,
    drain_required: bool = False,
    min_fee: int = 0,
    dust_relay_fee: float = DUST_RELAY_FEE,
    max_iterations: int = MAX_FEE_ITERATIONS,
) -> CoinSelectionResult:
    """
    Pick inputs covering `outputs` plus fee, largest first after `must_use`.

    Leftover value at or above the dust limit of `drain_script` becomes a drain
    output; below it the leftover is added to the fee. With `drain_required` (no
    explicit recipients) a drain output must be created. An absolute fee with a
    sub-dust leftover pulls one more input when possible so the fee stays exact.
    `min_fee` raises the computed fee to at least that amount (fee bumps).

    Adding inputs is bounded by the candidate pool; `max_iterations` only caps the
    fee/size passes spent on one input set.
    """
    selected = list(must_use)
    pool = sorted(may_use, key=lambda u: (-u.value, u.outpoint))
    target = sum(out.value for out in outputs)
    drain_output = TxOut(0, drain_script)
    dust_limit = dust_value(drain_script, dust_relay_fee)

    def fee_of(weight: int) -> int:
        return max(fee_for_weight(fee_policy, weight), min_fee)

    def resolve(available: int) -> tuple[CoinSelectionResult, int] | None:
        """Fee and drain for the current inputs, plus the sub-dust leftover folded into the fee."""
        with_drain = False
        drain_rejected = False
        for _ in range(max_iterations):
            weight = estimate_weight(selected, outputs + [drain_output] if with_drain else outputs)
            fee = fee_of(weight)
            remainder = available - target - fee
            if with_drain:
                if remainder >= dust_limit and remainder > 0:
                    return CoinSelectionResult(selected, fee, remainder, weight), 0
                # The drain output costs more than it leaves
                drain_rejected = True
                with_drain = False
                continue
            if remainder < 0:
                return None
            if remainder > 0 and remainder >= dust_limit and not drain_rejected:
                with_drain = True
                continue
            return CoinSelectionResult(selected, fee + remainder, 0, weight), remainder
        raise FeeEstimationFailedError(max_iterations)

    def add_input(needed: int, available: int) -> None:
        if not pool:
            raise InsufficientFundsError(needed, available)
        selected.append(pool.pop(0))

    while True:
        available = sum(utxo.value for utxo in selected)
        if not selected:
            add_input(target + fee_of(estimate_weight(selected, outputs)), 0)
            continue

        resolved = resolve(available)
        logger.debug(
            f"Coin selection: {len(selected)} inputs, available={available}, "
            f"resolved={resolved is not None}"
        )
        if resolved is None:
            add_input(target + fee_of(estimate_weight(selected, outputs)), available)
            continue

        result, leftover = resolved
        if result.has_drain_output:
            return result

        if drain_required:
            weight = estimate_weight(selected, outputs + [drain_output])
            add_input(target + fee_of(weight) + dust_limit, available)
            continue

        if isinstance(fee_policy, AbsoluteFee) and leftover > 0 and pool:
            selected.append(pool.pop(0))
            continue

        if leftover:
            logger.debug(f"Folding {leftover} sats of sub-dust change into the fee")
        return result
