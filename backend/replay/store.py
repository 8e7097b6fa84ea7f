from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

import httpx
from pydantic import ValidationError

from .config import ReplaySettings
from .models import HandHistoryModel, HandSummaryModel, StoredHandModel

logger = logging.getLogger(__name__)


class HandNotFoundError(KeyError):
    pass


class StoreError(RuntimeError):
    pass


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HandStore(Protocol):
    async def save(self, user_id: str, hand: HandHistoryModel) -> bool:
        ...

    async def list_hands(self, user_id: str) -> list[StoredHandModel]:
        ...

    async def get(self, user_id: str, hand_id: str) -> StoredHandModel:
        ...

    def subscribe(self, user_id: str) -> AsyncIterator[list[StoredHandModel]]:
        ...

    async def aclose(self) -> None:
        ...


def summarize_hand(stored: StoredHandModel) -> HandSummaryModel:
    hand = stored.hand
    hero = hand.find_hero()
    hero_won = hero is not None and any(
        share.player_name == hero.name and share.amount > 0 for share in hand.pot_outcome.distribution
    )
    game_info = hand.game_info
    return HandSummaryModel(
        hand_id=stored.hand_id,
        saved_at=stored.saved_at,
        small_blind=game_info.small_blind if game_info else None,
        big_blind=game_info.big_blind if game_info else None,
        final_pot=hand.pot_outcome.amount,
        hero_name=hero.name if hero else None,
        hero_position=hero.position if hero else None,
        hero_cards=list(hero.hole_cards or ()) if hero else [],
        hero_won=hero_won,
    )


class InMemoryHandStore:
    """Process-local store. Subscribers are woken on every save for their user."""

    def __init__(self) -> None:
        self._hands: dict[str, list[StoredHandModel]] = {}
        self._listeners: dict[str, set[asyncio.Queue[None]]] = {}

    async def save(self, user_id: str, hand: HandHistoryModel) -> bool:
        stored = StoredHandModel(hand_id=uuid.uuid4().hex[:12], saved_at=now_iso(), hand=hand)
        self._hands.setdefault(user_id, []).append(stored)
        for queue in self._listeners.get(user_id, set()):
            queue.put_nowait(None)
        return True

    async def list_hands(self, user_id: str) -> list[StoredHandModel]:
        return self._ordered(user_id)

    async def get(self, user_id: str, hand_id: str) -> StoredHandModel:
        for stored in self._hands.get(user_id, []):
            if stored.hand_id == hand_id:
                return stored
        raise HandNotFoundError(f"Hand not found: {hand_id}")

    async def subscribe(self, user_id: str) -> AsyncIterator[list[StoredHandModel]]:
        queue: asyncio.Queue[None] = asyncio.Queue()
        listeners = self._listeners.setdefault(user_id, set())
        listeners.add(queue)
        try:
            yield self._ordered(user_id)
            while True:
                await queue.get()
                yield self._ordered(user_id)
        finally:
            listeners.discard(queue)

    async def aclose(self) -> None:
        self._listeners.clear()

    def _ordered(self, user_id: str) -> list[StoredHandModel]:
        # Newest first; insertion order breaks timestamp ties.
        return list(reversed(self._hands.get(user_id, [])))


class HttpHandStore:
    """Hand store backed by a JSON document service.

    Expects ``GET/POST {base}/users/{user}/hands`` and
    ``GET {base}/users/{user}/hands/{hand}``. Subscriptions poll the list and
    yield whenever the ordered hand ids change.
    """

    def __init__(
        self,
        base_url: str,
        timeout_ms: int = 2500,
        poll_seconds: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(0.5, timeout_ms / 1000.0)
        self.poll_seconds = poll_seconds
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def save(self, user_id: str, hand: HandHistoryModel) -> bool:
        payload = {"hand": hand.model_dump(by_alias=True, mode="json"), "savedAt": now_iso()}
        try:
            response = await self._http.post(f"/users/{user_id}/hands", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Saving hand for user %s failed: %s", user_id, exc)
            return False
        return True

    async def list_hands(self, user_id: str) -> list[StoredHandModel]:
        try:
            documents = await self._get_json(f"/users/{user_id}/hands", params={"order": "desc"})
        except httpx.HTTPError as exc:
            raise StoreError(str(exc)) from exc
        if not isinstance(documents, list):
            raise StoreError("Hand list response was not a JSON array.")

        hands: list[StoredHandModel] = []
        for document in documents:
            try:
                hands.append(StoredHandModel.model_validate(document))
            except ValidationError as exc:
                logger.warning("Skipping undecodable hand document: %s", exc.errors()[:1])
        hands.sort(key=lambda stored: stored.saved_at, reverse=True)
        return hands

    async def get(self, user_id: str, hand_id: str) -> StoredHandModel:
        try:
            document = await self._get_json(f"/users/{user_id}/hands/{hand_id}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                raise HandNotFoundError(f"Hand not found: {hand_id}") from exc
            raise StoreError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise StoreError(str(exc)) from exc
        try:
            return StoredHandModel.model_validate(document)
        except ValidationError as exc:
            raise StoreError(f"Hand document {hand_id} is malformed.") from exc

    async def subscribe(self, user_id: str) -> AsyncIterator[list[StoredHandModel]]:
        last_ids: tuple[str, ...] | None = None
        while True:
            try:
                hands = await self.list_hands(user_id)
            except StoreError as exc:
                logger.warning("Polling hands for user %s failed: %s", user_id, exc)
            else:
                ids = tuple(stored.hand_id for stored in hands)
                if ids != last_ids:
                    last_ids = ids
                    yield hands
            await asyncio.sleep(self.poll_seconds)

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        response = await self._http.get(path, params=params)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"Hand store returned a non-JSON body for {path}.") from exc


def build_hand_store(settings: ReplaySettings) -> HandStore:
    if settings.hand_store_url:
        return HttpHandStore(
            settings.hand_store_url,
            timeout_ms=settings.hand_store_timeout_ms,
            poll_seconds=settings.hand_store_poll_seconds,
        )
    return InMemoryHandStore()
