from __future__ import annotations

import asyncio

import pytest

from trade_signal_engine.chains.base import LogBatch
from trade_signal_engine.config import AppSettings
from trade_signal_engine.detection.classifier import SwapClassifier
from trade_signal_engine.detection.detector import SwapDetector

MINT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
OTHER_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USER = "9xQeWvG816bUx9EPm2Tbd2Ykqg3k9uADuZbL9g1z3Q2E"
POOL = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"
JUP_LOGS = [
    "Program JUP6LkbZbjS2jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 invoke [1]",
    "Program log: Instruction: Route",
    "Program JUP6LkbZbjS2jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 success",
]


def token_row(index, mint, owner, amount):
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "amount": str(int(amount * 10**6)),
            "decimals": 6,
            "uiAmount": float(amount),
            "uiAmountString": str(amount),
        },
    }


def make_tx(pre_tokens, post_tokens, pre_lamports, post_lamports, keys=None, err=None):
    keys = keys or [USER, POOL, "ComputeBudget111111111111111111111111111111"][: len(pre_lamports)]
    return {
        "slot": 1,
        "blockTime": 1_700_000_000,
        "meta": {
            "err": err,
            "preBalances": pre_lamports,
            "postBalances": post_lamports,
            "preTokenBalances": pre_tokens,
            "postTokenBalances": post_tokens,
        },
        "transaction": {
            "signatures": ["sig"],
            "message": {"accountKeys": [{"pubkey": k, "signer": i == 0} for i, k in enumerate(keys)]},
        },
    }


def buy_tx(mint=MINT):
    """User wallet goes 0 -> 50 tokens paying 2 SOL; pool vault drains 50 tokens."""
    return make_tx(
        pre_tokens=[token_row(2, mint, POOL, 1_000_000)],
        post_tokens=[token_row(1, mint, USER, 50), token_row(2, mint, POOL, 999_950)],
        pre_lamports=[10_000_000_000, 500_000_000_000],
        post_lamports=[8_000_000_000, 501_990_000_000],
    )


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeStream:
    def __init__(self, fail=False):
        self.fail = fail
        self.subscribed = []
        self.unsubscribed = []
        self.on_logs = None
        self.on_error = None

    def subscribe(self, program_id, commitment, on_logs, on_error):
        if self.fail:
            raise RuntimeError("ws connect refused")
        handle = object()
        self.subscribed.append((program_id, commitment, handle))
        self.on_logs = on_logs
        self.on_error = on_error
        return handle

    def unsubscribe(self, handle):
        self.unsubscribed.append(handle)

    def deliver(self, signature, logs=None):
        self.on_logs(LogBatch(signature=signature, logs=list(JUP_LOGS if logs is None else logs)))


class FakeSource:
    def __init__(self, txs=None):
        self.txs = dict(txs or {})
        self.calls = []

    async def fetch_transaction(self, signature, commitment):
        self.calls.append((signature, commitment))
        res = self.txs.get(signature)
        if isinstance(res, list):
            res = res.pop(0)
        if isinstance(res, Exception):
            raise res
        return res


class Recorder:
    def __init__(self, events):
        self.seen = []
        for name in ("connected", "disconnected", "trade", "heartbeat", "connection_stale", "error"):
            getattr(events, name).subscribe(lambda payload, n=name: self.seen.append((n, payload)))

    def of(self, name):
        return [p for n, p in self.seen if n == name]


async def drain(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    return AppSettings(reconnect_backoff_sec=0.01, health_check_interval_sec=3600)


@pytest.fixture
def make_detector(settings):
    def _make(stream=None, source=None, clock=None):
        d = SwapDetector(
            settings=settings,
            stream=stream or FakeStream(),
            source=source or FakeSource(),
            classifier=SwapClassifier.from_settings(settings),
            clock=clock or FakeClock(),
        )
        return d, Recorder(d.events)

    return _make
