from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from .cost_resolver import CostResolver, ResolvedDisposal
from .currency_pool import PoolRegistry, PoolSnapshot
from .ledger import TAXABLE_KINDS, Currency, Transaction, TransactionKind

logger = logging.getLogger(__name__)

_TransferKey = tuple[Currency, Decimal, datetime]


class GainsResult(BaseModel):
    disposals: list[ResolvedDisposal]
    open_pools: list[PoolSnapshot]
    unmatched_transfers: list[Transaction]
    skipped: int


class GainsEngine:
    """Fold a ledger into resolved disposals using per-account average-cost pools."""

    def __init__(self, *, base_currency: str) -> None:
        self._base_currency = Currency(base_currency.upper())

    def process(self, transactions: Iterable[Transaction]) -> GainsResult:
        """Transactions sharing a timestamp are processed in input order."""
        registry = PoolRegistry()
        resolver = CostResolver(registry, base_currency=self._base_currency)
        disposals: list[ResolvedDisposal] = []
        pending_transfers: dict[_TransferKey, list[Transaction]] = defaultdict(list)
        skipped = 0

        for transaction in sorted(transactions, key=lambda tx: tx.timestamp):
            if not transaction.is_completed:
                logger.debug("Skipping %s row in state %r", transaction.kind, transaction.state)
                skipped += 1
                continue

            if transaction.currency == self._base_currency:
                # Fiat legs carry no pool; their value is already on the crypto leg.
                continue

            if transaction.kind == TransactionKind.TRANSFER:
                self._apply_transfer(transaction, registry, pending_transfers)
                continue

            if transaction.kind not in TAXABLE_KINDS:
                logger.debug(
                    "Skipping non-taxable %s row %s %s @%s",
                    transaction.kind,
                    transaction.amount,
                    transaction.currency,
                    transaction.timestamp.isoformat(),
                )
                skipped += 1
                continue

            if transaction.is_acquisition:
                registry.credit(
                    transaction.currency,
                    transaction.account,
                    transaction.quantity,
                    resolver.acquisition_cost(transaction),
                )
            else:
                disposals.append(resolver.resolve_disposal(transaction))

        unmatched = [tx for legs in pending_transfers.values() for tx in legs]
        for transaction in unmatched:
            logger.warning(
                "Transfer of %s %s in %s @%s has no counterpart leg; pools left unchanged",
                transaction.amount,
                transaction.currency,
                transaction.account,
                transaction.timestamp.isoformat(),
            )

        return GainsResult(
            disposals=disposals,
            open_pools=registry.snapshots(),
            unmatched_transfers=unmatched,
            skipped=skipped,
        )

    def _apply_transfer(
        self,
        transaction: Transaction,
        registry: PoolRegistry,
        pending_transfers: dict[_TransferKey, list[Transaction]],
    ) -> None:
        # Both legs of an internal move are booked at the same moment.
        key = (transaction.currency, transaction.quantity, transaction.timestamp)
        candidates = pending_transfers[key]

        match_index: int | None = None
        for idx, candidate in enumerate(candidates):
            if candidate.account != transaction.account and (candidate.amount > 0) != (transaction.amount > 0):
                match_index = idx
                break

        if match_index is None:
            candidates.append(transaction)
            return

        counterpart = candidates.pop(match_index)
        if not candidates:
            pending_transfers.pop(key, None)

        outgoing, incoming = (transaction, counterpart) if transaction.is_disposal else (counterpart, transaction)
        moved = registry.transfer(transaction.currency, outgoing.account, incoming.account, transaction.quantity)
        logger.debug(
            "Moved %s %s from %s to %s @%s",
            moved,
            transaction.currency,
            outgoing.account,
            incoming.account,
            transaction.timestamp.isoformat(),
        )
