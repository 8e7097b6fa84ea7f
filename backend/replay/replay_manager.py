from __future__ import annotations

import asyncio
import logging
import uuid
from typing import AsyncIterator

from .config import ReplaySettings
from .engine import IllegalTransition, InvalidHandHistory, ReplayMachine, Scheduler
from .models import (
    HandHistoryModel,
    HandSummaryModel,
    ReplaySnapshotModel,
    StepResolutionModel,
)
from .store import HandNotFoundError, HandStore, build_hand_store, summarize_hand

logger = logging.getLogger(__name__)


class ReplayNotFoundError(KeyError):
    pass


class ReplayManager:
    def __init__(
        self,
        store: HandStore | None = None,
        settings: ReplaySettings | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.settings = settings or ReplaySettings.from_env()
        self.store = store or build_hand_store(self.settings)
        self._scheduler = scheduler
        self._replays: dict[str, ReplayMachine] = {}
        self._replay_locks: dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    async def aclose(self) -> None:
        async with self._lock:
            for machine in self._replays.values():
                machine.cancel()
            self._replays.clear()
            self._replay_locks.clear()
        await self.store.aclose()

    async def save_hand(self, user_id: str, hand: HandHistoryModel) -> bool:
        saved = await self.store.save(user_id, hand)
        if not saved:
            logger.warning("Hand store rejected a hand for user %s", user_id)
        return saved

    async def list_hands(self, user_id: str) -> list[HandSummaryModel]:
        return [summarize_hand(stored) for stored in await self.store.list_hands(user_id)]

    async def watch_hands(self, user_id: str) -> AsyncIterator[list[HandSummaryModel]]:
        async for hands in self.store.subscribe(user_id):
            yield [summarize_hand(stored) for stored in hands]

    async def create_replay(self, hand: HandHistoryModel) -> ReplaySnapshotModel:
        async with self._lock:
            replay_id = uuid.uuid4().hex[:12]
            machine = ReplayMachine(
                hand,
                replay_id=replay_id,
                scheduler=self._scheduler,
                settlement_delay=self.settings.settlement_delay,
                bet_convention=self.settings.bet_convention,
            )
            machine.start()
            self._replays[replay_id] = machine
            self._replay_locks[replay_id] = asyncio.Lock()
        return machine.snapshot()

    async def create_replay_from_store(self, user_id: str, hand_id: str) -> ReplaySnapshotModel:
        stored = await self.store.get(user_id, hand_id)
        return await self.create_replay(stored.hand)

    async def get_snapshot(self, replay_id: str) -> ReplaySnapshotModel:
        machine, lock = await self._get_replay_entry(replay_id)
        async with lock:
            return machine.snapshot()

    async def restart(self, replay_id: str) -> ReplaySnapshotModel:
        machine, lock = await self._get_replay_entry(replay_id)
        async with lock:
            machine.reset()
            return machine.snapshot()

    async def step(self, replay_id: str) -> StepResolutionModel:
        machine, lock = await self._get_replay_entry(replay_id)
        async with lock:
            result = machine.step()
            return StepResolutionModel(
                outcome=result.outcome,
                snapshot=machine.snapshot(),
                warnings=[warning.to_model() for warning in result.warnings],
                error=result.error.to_model() if result.error else None,
            )

    async def discard(self, replay_id: str) -> None:
        async with self._lock:
            machine = self._get_replay(replay_id)
            machine.cancel()
            del self._replays[replay_id]
            self._replay_locks.pop(replay_id, None)

    async def _get_replay_entry(self, replay_id: str) -> tuple[ReplayMachine, asyncio.Lock]:
        async with self._lock:
            machine = self._get_replay(replay_id)
            lock = self._replay_locks.get(replay_id)
            if lock is None:
                lock = asyncio.Lock()
                self._replay_locks[replay_id] = lock
            return machine, lock

    def _get_replay(self, replay_id: str) -> ReplayMachine:
        machine = self._replays.get(replay_id)
        if not machine:
            raise ReplayNotFoundError(f"Replay not found: {replay_id}")
        return machine


__all__ = [
    "HandNotFoundError",
    "IllegalTransition",
    "InvalidHandHistory",
    "ReplayManager",
    "ReplayNotFoundError",
]
