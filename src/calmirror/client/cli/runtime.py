"""Wiring of the sync stack for CLI commands.

This module provides:
- SyncRuntime: Local store, remote client and sync core built from one
  ClientConfig, closed together
- run_with_runtime: Run a coroutine against a fresh runtime
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from calmirror.client.api import CalendarClient
from calmirror.client.auth import StoreTokenProvider
from calmirror.client.cli.config import load_client_config, open_store
from calmirror.client.state import LocalStore
from calmirror.client.sync import (
    BackoffExecutor,
    ChangeQueue,
    ConflictResolver,
    ErrorLog,
    EventEditor,
    QueueProcessor,
    SyncContext,
    SyncOrchestrator,
    SyncScheduler,
)
from calmirror.core.config import ClientConfig

T = TypeVar("T")


@dataclass
class SyncRuntime:
    """Every collaborator of a sync run, sharing one store and HTTP client."""

    config: ClientConfig
    store: LocalStore
    http: httpx.AsyncClient
    tokens: StoreTokenProvider
    client: CalendarClient
    error_log: ErrorLog
    context: SyncContext
    queue: ChangeQueue
    processor: QueueProcessor
    orchestrator: SyncOrchestrator
    editor: EventEditor
    resolver: ConflictResolver
    scheduler: SyncScheduler

    @classmethod
    def create(
        cls,
        config: ClientConfig,
        store: LocalStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> SyncRuntime:
        """Build the stack.

        Args:
            config: Client configuration.
            store: Existing store (opened from ``config.db_path`` otherwise).
            http_client: Shared HTTP client (created otherwise).
        """
        if store is None:
            if config.db_path is None:
                raise ValueError("db_path is not configured")
            store = open_store(config)
        http = http_client or httpx.AsyncClient(timeout=config.timeout)
        clock = time.time
        policy = config.policy

        error_log = ErrorLog(store, clock=clock)
        tokens = StoreTokenProvider(store, config, http_client=http, error_log=error_log)
        client = CalendarClient(config, tokens, http_client=http)
        executor = BackoffExecutor(policy)
        context = SyncContext()
        queue = ChangeQueue(store, clock=clock, max_retries=policy.queue_max_retries)
        processor = QueueProcessor(
            store,
            client,
            executor=executor,
            policy=policy,
            is_online=lambda: context.online,
            clock=clock,
            error_log=error_log,
        )
        orchestrator = SyncOrchestrator(
            store, client, executor=executor, policy=policy, clock=clock, error_log=error_log
        )
        scheduler = SyncScheduler(
            context,
            orchestrator,
            processor,
            store,
            interval_minutes=config.sync_interval_minutes,
            auto_sync=config.auto_sync,
            probe=client.health_check,
            clock=clock,
        )
        return cls(
            config=config,
            store=store,
            http=http,
            tokens=tokens,
            client=client,
            error_log=error_log,
            context=context,
            queue=queue,
            processor=processor,
            orchestrator=orchestrator,
            editor=EventEditor(store, queue, processor=processor, clock=clock),
            resolver=ConflictResolver(store, queue, clock=clock),
            scheduler=scheduler,
        )

    async def aclose(self) -> None:
        """Stop the scheduler and release the HTTP client and the store."""
        self.scheduler.shutdown()
        await self.http.aclose()
        self.store.close()


def run_with_runtime(
    func: Callable[[SyncRuntime], Awaitable[T]],
    config: ClientConfig | None = None,
) -> T:
    """Run ``func`` on a fresh runtime inside a new event loop, then close it."""

    async def runner() -> T:
        runtime = SyncRuntime.create(config or load_client_config())
        try:
            return await func(runtime)
        finally:
            await runtime.aclose()

    return asyncio.run(runner())
