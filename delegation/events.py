"""Polling subscription to ``TaskAssigned`` events."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

from .chain import ChainClient

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


def _noop() -> None:
    return None


def decode_task_assigned(log: Any) -> Dict[str, Any]:
    """Flatten a web3 event log into plain fields."""

    args = log.get("args") or {}
    tx_hash = log.get("transactionHash")
    if hasattr(tx_hash, "hex"):
        tx_hash = tx_hash.hex()
    return {
        "task_id": args.get("taskId"),
        "assigned_to": args.get("assignedTo"),
        "random_index": args.get("randomIndex"),
        "transaction_hash": tx_hash,
        "block_number": log.get("blockNumber"),
    }


class EventWatcher:
    """Invoke a callback for each ``TaskAssigned`` log on a chain.

    Nothing reconciles these events with the optimistic client-side pick
    made by the orchestrator; callers that care must compare themselves.
    """

    def __init__(self, chain: ChainClient, *, poll_interval: float = 2.0) -> None:
        self._chain = chain
        self._poll_interval = poll_interval
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_watches(self) -> int:
        return len(self._tasks)

    def watch(self, chain_id: int, callback: Callable[[Any], Any]) -> Unsubscribe:
        """Start polling in the running loop and return an idempotent unsubscribe."""

        if not self._chain.supports(chain_id):
            logger.error("Contract not deployed on chain %s; not watching TaskAssigned", chain_id)
            return _noop

        loop = asyncio.get_running_loop()
        logger.info("Starting to watch TaskAssigned events on chain %s", chain_id)
        task = loop.create_task(self._poll(chain_id, callback), name=f"task-assigned-{chain_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        stopped = False

        def unsubscribe() -> None:
            nonlocal stopped
            if stopped:
                return
            stopped = True
            task.cancel()
            logger.info("Stopped watching TaskAssigned events on chain %s", chain_id)

        return unsubscribe

    async def _poll(self, chain_id: int, callback: Callable[[Any], Any]) -> None:
        log_filter: Optional[Any] = None
        try:
            while True:
                try:
                    if log_filter is None:
                        log_filter = await asyncio.to_thread(self._chain.task_assigned_filter, chain_id)
                    entries = await asyncio.to_thread(log_filter.get_new_entries)
                except Exception as exc:
                    logger.error("Error watching TaskAssigned events on chain %s: %s", chain_id, exc)
                    log_filter = None
                    entries = []
                for entry in entries:
                    logger.info("TaskAssigned event received", extra={"context": decode_task_assigned(entry)})
                    try:
                        result = callback(entry)
                        if asyncio.iscoroutine(result):
                            await result
                    except Exception as exc:
                        logger.error("TaskAssigned callback failed: %s", exc)
                await asyncio.sleep(self._poll_interval)
        finally:
            if log_filter is not None:
                await self._uninstall(chain_id, log_filter)

    async def _uninstall(self, chain_id: int, log_filter: Any) -> None:
        # Runs while the task is being cancelled; shield so the RPC completes.
        try:
            await asyncio.shield(asyncio.to_thread(self._chain.uninstall_filter, chain_id, log_filter))
        except Exception as exc:
            logger.warning("Failed to uninstall TaskAssigned filter on chain %s: %s", chain_id, exc)


__all__ = ["EventWatcher", "Unsubscribe", "decode_task_assigned"]
