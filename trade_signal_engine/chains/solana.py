from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.websocket_api import connect as ws_connect
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.rpc.responses import LogsNotification, SubscriptionResult
from solders.signature import Signature

from trade_signal_engine.chains.base import LogBatch
from trade_signal_engine.errors import SubscriptionError


@dataclass
class StreamHandle:
    program_id: str
    task: asyncio.Task | None = None
    subscription_id: int | None = None


@dataclass
class SolanaLogStream:
    """logsSubscribe on a single program over the RPC websocket."""

    ws_url: str
    connect: Callable = field(default=ws_connect, repr=False)

    def subscribe(self, program_id, commitment, on_logs, on_error) -> StreamHandle:
        try:
            pubkey = Pubkey.from_string(program_id)
        except Exception as e:
            raise SubscriptionError(f"invalid program id {program_id!r}: {e}") from e
        handle = StreamHandle(program_id=program_id)
        handle.task = asyncio.get_running_loop().create_task(
            self._pump(handle, pubkey, commitment, on_logs, on_error)
        )
        return handle

    def unsubscribe(self, handle: StreamHandle) -> None:
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        logger.info("Unsubscribed from {} logs (id {})", handle.program_id, handle.subscription_id)

    async def _pump(self, handle, pubkey, commitment, on_logs, on_error) -> None:
        try:
            async with self.connect(self.ws_url) as websocket:
                await websocket.logs_subscribe(
                    filter_=RpcTransactionLogsFilterMentions(pubkey),
                    commitment=Commitment(commitment),
                )
                try:
                    async for batch in websocket:
                        for msg in batch:
                            if isinstance(msg, SubscriptionResult):
                                handle.subscription_id = msg.result
                                logger.info("Solana logs subscription established: id {}", msg.result)
                            elif isinstance(msg, LogsNotification):
                                value = msg.result.value
                                on_logs(
                                    LogBatch(
                                        signature=str(value.signature) if value.signature else None,
                                        logs=list(value.logs or []),
                                        err=value.err,
                                        slot=msg.result.context.slot,
                                    )
                                )
                except asyncio.CancelledError:
                    if handle.subscription_id is not None:
                        try:
                            await websocket.logs_unsubscribe(handle.subscription_id)
                        except Exception as e:  # noqa: BLE001
                            logger.debug("logs_unsubscribe failed: {}", e)
                    raise
            on_error(SubscriptionError("log stream closed by server"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Solana subscription error: {}", e)
            on_error(e if isinstance(e, SubscriptionError) else SubscriptionError(str(e)))


def rpc_shaped(value: dict) -> dict:
    # solders may nest meta under "transaction"; flatten to the JSON-RPC result shape
    inner = value.get("transaction")
    if "meta" not in value and isinstance(inner, dict) and "meta" in inner:
        out = dict(value)
        out["meta"] = inner.get("meta")
        out["transaction"] = inner.get("transaction")
        return out
    return value


@dataclass
class SolanaTransactionSource:
    client: AsyncClient

    @classmethod
    def create(cls, rpc_url: str) -> SolanaTransactionSource:
        return cls(client=AsyncClient(rpc_url))

    async def fetch_transaction(self, signature: str, commitment: str) -> dict | None:
        resp = await self.client.get_transaction(
            Signature.from_string(signature),
            encoding="jsonParsed",
            commitment=Commitment(commitment),
            max_supported_transaction_version=0,
        )
        if resp.value is None:
            return None
        return rpc_shaped(json.loads(resp.value.to_json()))

    async def close(self) -> None:
        await self.client.close()
