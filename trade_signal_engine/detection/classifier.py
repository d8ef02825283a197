from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from trade_signal_engine.config import AppSettings
from trade_signal_engine.detection.balances import (
    LAMPORTS_PER_SOL,
    NativeBalanceChange,
    TokenBalanceChange,
    Tx,
    account_keys,
    native_balance_changes,
    token_balance_changes,
    token_mints,
    tx_meta,
)


@dataclass(frozen=True)
class Classification:
    asset_id: str
    asset_amount: float
    native_amount: float
    is_buy: bool
    user_id: str


@dataclass(frozen=True)
class ClassifyOutcome:
    classification: Classification | None
    reason: str | None = None
    found: list[str] = field(default_factory=list)


@dataclass
class SwapClassifier:
    pool_vault_threshold: float = 100_000.0
    token_dust_threshold: float = 0.01
    native_dust_lamports: int = 1_000_000
    min_native_amount: float = 0.0001

    @classmethod
    def from_settings(cls, settings: AppSettings) -> SwapClassifier:
        return cls(
            pool_vault_threshold=settings.pool_vault_threshold,
            token_dust_threshold=settings.token_dust_threshold,
            native_dust_lamports=settings.native_dust_lamports,
            min_native_amount=settings.min_native_amount,
        )

    def is_vault(self, bal: TokenBalanceChange) -> bool:
        return bal.pre > self.pool_vault_threshold or bal.post > self.pool_vault_threshold

    def user_side(self, changes: Iterable[TokenBalanceChange]) -> TokenBalanceChange | None:
        """Largest non-vault token change, or None when only vaults (or dust) moved.

        Vault balances move opposite to the user's, so they are never used.
        """
        best: TokenBalanceChange | None = None
        for bal in changes:
            if self.is_vault(bal):
                logger.debug(
                    "Skip pool vault account {} (balance {:.0f})",
                    bal.account_index,
                    max(bal.pre, bal.post),
                )
                continue
            if bal.change < self.token_dust_threshold or bal.change == 0:
                continue
            if best is None or bal.change > best.change:
                best = bal
        return best

    def native_side(self, changes: Iterable[NativeBalanceChange]) -> NativeBalanceChange | None:
        best: NativeBalanceChange | None = None
        for bal in changes:
            if bal.change_lamports < self.native_dust_lamports:
                continue
            if best is None or bal.change_lamports > best.change_lamports:
                best = bal
        return best

    def classify(self, tx: Tx, watched: Iterable[str], signature: str | None = None) -> ClassifyOutcome:
        """Find the first watched asset with a qualifying user-wallet balance change.

        Raises TransactionParseError on malformed balance data.
        """
        watched = list(watched)
        tx_meta(tx, signature)
        found = token_mints(tx)
        if not any(a in found for a in watched):
            return ClassifyOutcome(None, reason="token_not_in_transaction", found=found)

        for asset in watched:
            if asset not in found:
                continue
            user = self.user_side(token_balance_changes(tx, asset, signature))
            if user is None:
                logger.debug("No user wallet change for {} in {}", asset[:8], signature)
                continue

            native = self.native_side(native_balance_changes(tx, signature))
            native_amount = native.change_lamports / LAMPORTS_PER_SOL if native else 0.0
            if native_amount <= self.min_native_amount or user.change <= 0:
                logger.debug(
                    "Rejecting {} for {}: native={:.6f} tokens={:.4f}",
                    signature,
                    asset[:8],
                    native_amount,
                    user.change,
                )
                return ClassifyOutcome(None, reason="below_dust", found=found)

            user_id = user.owner
            if not user_id:
                keys = account_keys(tx)
                if native is not None and native.account:
                    user_id = native.account
                elif keys:
                    user_id = keys[0]
            return ClassifyOutcome(
                Classification(
                    asset_id=asset,
                    asset_amount=user.change,
                    native_amount=native_amount,
                    is_buy=user.increased,
                    user_id=user_id or "unknown",
                ),
                found=found,
            )

        return ClassifyOutcome(None, reason="no_qualifying_change", found=found)
