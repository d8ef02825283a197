from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from trade_signal_engine.config import normalize_asset
from trade_signal_engine.errors import TransactionParseError

LAMPORTS_PER_SOL = 1_000_000_000

Tx = dict[str, Any]


@dataclass(frozen=True)
class TokenBalanceChange:
    account_index: int
    mint: str
    owner: str | None
    pre: float
    post: float

    @property
    def change(self) -> float:
        return abs(self.post - self.pre)

    @property
    def increased(self) -> bool:
        return self.post > self.pre


@dataclass(frozen=True)
class NativeBalanceChange:
    account_index: int
    account: str | None
    pre_lamports: int
    post_lamports: int

    @property
    def change_lamports(self) -> int:
        return abs(self.post_lamports - self.pre_lamports)


def tx_meta(tx: Tx, signature: str | None = None) -> dict:
    meta = tx.get("meta") if isinstance(tx, dict) else None
    if not isinstance(meta, dict):
        raise TransactionParseError(signature, "transaction has no meta")
    return meta


def is_failed(tx: Tx) -> bool:
    meta = tx.get("meta") or {}
    return meta.get("err") is not None


def account_keys(tx: Tx) -> list[str]:
    """Top-level account keys; jsonParsed rows carry a pubkey, raw rows are plain strings."""
    message = ((tx.get("transaction") or {}).get("message")) or {}
    keys: list[str] = []
    for k in message.get("accountKeys") or []:
        if isinstance(k, dict):
            keys.append(str(k.get("pubkey") or ""))
        else:
            keys.append(str(k))
    return keys


def ui_amount(row: dict, signature: str | None = None) -> float:
    ui = row.get("uiTokenAmount")
    if not isinstance(ui, dict):
        raise TransactionParseError(signature, "token balance row without uiTokenAmount")
    try:
        if ui.get("uiAmountString") not in (None, ""):
            return float(ui["uiAmountString"])
        if ui.get("uiAmount") is not None:
            return float(ui["uiAmount"])
        if ui.get("amount") is not None:
            return int(ui["amount"]) / (10 ** int(ui.get("decimals") or 0))
    except (TypeError, ValueError) as e:
        raise TransactionParseError(signature, f"unreadable token amount {ui!r}") from e
    return 0.0


def token_mints(tx: Tx) -> list[str]:
    meta = tx.get("meta") or {}
    out: list[str] = []
    for row in (meta.get("preTokenBalances") or []) + (meta.get("postTokenBalances") or []):
        mint = normalize_asset(str(row.get("mint") or ""))
        if mint and mint not in out:
            out.append(mint)
    return out


def token_balance_changes(tx: Tx, mint: str, signature: str | None = None) -> list[TokenBalanceChange]:
    """Pre/post balances per token account for one mint.

    Rows are merged by accountIndex; an account created by the transaction
    only appears post and is counted from zero.
    """
    meta = tx_meta(tx, signature)
    want = normalize_asset(mint)
    merged: dict[int, dict[str, Any]] = {}
    for side in ("pre", "post"):
        for row in meta.get(f"{side}TokenBalances") or []:
            if normalize_asset(str(row.get("mint") or "")) != want:
                continue
            idx = row.get("accountIndex")
            if not isinstance(idx, int):
                raise TransactionParseError(signature, "token balance row without accountIndex")
            entry = merged.setdefault(idx, {"pre": 0.0, "post": 0.0, "owner": None})
            entry[side] = ui_amount(row, signature)
            entry["owner"] = entry["owner"] or row.get("owner")
    return [
        TokenBalanceChange(
            account_index=idx,
            mint=want,
            owner=e["owner"],
            pre=e["pre"],
            post=e["post"],
        )
        for idx, e in sorted(merged.items())
    ]


def native_balance_changes(tx: Tx, signature: str | None = None) -> list[NativeBalanceChange]:
    meta = tx_meta(tx, signature)
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if len(pre) != len(post):
        raise TransactionParseError(
            signature, f"native balance arrays differ in length ({len(pre)} vs {len(post)})"
        )
    keys = account_keys(tx)
    out: list[NativeBalanceChange] = []
    for i, (p, q) in enumerate(zip(pre, post)):
        try:
            pl, ql = int(p), int(q)
        except (TypeError, ValueError) as e:
            raise TransactionParseError(signature, f"unreadable lamport balance at {i}") from e
        out.append(
            NativeBalanceChange(
                account_index=i,
                account=keys[i] if i < len(keys) else None,
                pre_lamports=pl,
                post_lamports=ql,
            )
        )
    return out
