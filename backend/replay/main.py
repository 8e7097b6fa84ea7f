from __future__ import annotations

import asyncio
import contextlib
import importlib.util
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from .config import load_environment
from .models import (
    HandHistoryModel,
    HandSummaryModel,
    ReplaySnapshotModel,
    SaveHandResultModel,
    StepResolutionModel,
    TransitionErrorModel,
)
from .replay_manager import HandNotFoundError, InvalidHandHistory, ReplayManager, ReplayNotFoundError
from .store import StoreError

load_environment()

DefaultResponseClass = ORJSONResponse if importlib.util.find_spec("orjson") else JSONResponse
manager = ReplayManager()


@contextlib.asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        yield
    finally:
        await manager.aclose()


app = FastAPI(
    title="Hand Replay API",
    version="0.1.0",
    default_response_class=DefaultResponseClass,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _invalid_hand_detail(exc: InvalidHandHistory) -> dict[str, Any]:
    return {"message": str(exc), "problems": exc.problems}


def _rejected_step_detail(error: TransitionErrorModel, snapshot: ReplaySnapshotModel) -> dict[str, Any]:
    return {
        "message": error.message,
        "reason": error.reason,
        "snapshot": snapshot.model_dump(by_alias=True, mode="json"),
    }


@app.get("/api/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/users/{user_id}/hands", response_model=SaveHandResultModel)
async def save_hand(user_id: str, hand: HandHistoryModel) -> SaveHandResultModel:
    saved = await manager.save_hand(user_id, hand)
    if not saved:
        raise HTTPException(status_code=502, detail="Hand store did not accept the hand.")
    return SaveHandResultModel(saved=True)


@app.get("/api/users/{user_id}/hands", response_model=list[HandSummaryModel])
async def list_hands(user_id: str) -> list[HandSummaryModel]:
    try:
        return await manager.list_hands(user_id)
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/api/users/{user_id}/hands/{hand_id}/replays", response_model=ReplaySnapshotModel)
async def replay_saved_hand(user_id: str, hand_id: str) -> ReplaySnapshotModel:
    try:
        return await manager.create_replay_from_store(user_id, hand_id)
    except HandNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidHandHistory as exc:
        raise HTTPException(status_code=422, detail=_invalid_hand_detail(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/api/replays", response_model=ReplaySnapshotModel)
async def create_replay(hand: HandHistoryModel) -> ReplaySnapshotModel:
    try:
        return await manager.create_replay(hand)
    except InvalidHandHistory as exc:
        raise HTTPException(status_code=422, detail=_invalid_hand_detail(exc)) from exc


@app.get("/api/replays/{replay_id}", response_model=ReplaySnapshotModel)
async def get_replay(replay_id: str) -> ReplaySnapshotModel:
    try:
        return await manager.get_snapshot(replay_id)
    except ReplayNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/replays/{replay_id}/start", response_model=ReplaySnapshotModel)
async def restart_replay(replay_id: str) -> ReplaySnapshotModel:
    try:
        return await manager.restart(replay_id)
    except ReplayNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/replays/{replay_id}/step", response_model=StepResolutionModel)
async def step_replay(replay_id: str) -> StepResolutionModel:
    try:
        resolution = await manager.step(replay_id)
    except ReplayNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if resolution.error is not None:
        raise HTTPException(status_code=409, detail=_rejected_step_detail(resolution.error, resolution.snapshot))
    return resolution


@app.delete("/api/replays/{replay_id}")
async def discard_replay(replay_id: str) -> dict[str, str]:
    try:
        await manager.discard(replay_id)
    except ReplayNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "discarded"}


def _ws_error_payload(request_id: str, status: int, message: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "error",
        "requestId": request_id,
        "status": status,
        "message": message,
    }
    if extra:
        payload.update(extra)
    return payload


def _ws_snapshot_message(request_id: str, snapshot: ReplaySnapshotModel) -> dict[str, Any]:
    return {
        "type": "replay_state",
        "requestId": request_id,
        "payload": snapshot.model_dump(by_alias=True, mode="json"),
    }


@app.websocket("/api/ws/replays/{replay_id}")
async def replay_socket(websocket: WebSocket, replay_id: str) -> None:
    await websocket.accept()
    try:
        initial = await manager.get_snapshot(replay_id)
    except ReplayNotFoundError as exc:
        await websocket.send_json(_ws_error_payload(request_id="", status=404, message=str(exc)))
        await websocket.close(code=4404)
        return

    await websocket.send_json(_ws_snapshot_message("", initial))

    while True:
        try:
            raw_message = await websocket.receive_json()
        except WebSocketDisconnect:
            return
        except ValueError:
            await websocket.send_json(_ws_error_payload(request_id="", status=400, message="Malformed websocket JSON payload."))
            continue

        if not isinstance(raw_message, dict):
            await websocket.send_json(_ws_error_payload(request_id="", status=400, message="Websocket message must be a JSON object."))
            continue

        request_id = str(raw_message.get("requestId", ""))
        op = str(raw_message.get("op", "")).strip().lower()

        try:
            if op == "ping":
                await websocket.send_json({"type": "pong", "requestId": request_id})
                continue

            if op == "get_state":
                await websocket.send_json(_ws_snapshot_message(request_id, await manager.get_snapshot(replay_id)))
                continue

            if op in {"start", "reset"}:
                await websocket.send_json(_ws_snapshot_message(request_id, await manager.restart(replay_id)))
                continue

            if op == "step":
                resolution = await manager.step(replay_id)
                if resolution.error is not None:
                    await websocket.send_json(
                        _ws_error_payload(
                            request_id=request_id,
                            status=409,
                            message=resolution.error.message,
                            extra={"reason": resolution.error.reason},
                        )
                    )
                    continue
                await websocket.send_json(
                    {
                        "type": "step_resolution",
                        "requestId": request_id,
                        "payload": resolution.model_dump(by_alias=True, mode="json"),
                    }
                )
                continue

            await websocket.send_json(
                _ws_error_payload(request_id=request_id, status=400, message=f"Unsupported websocket op: {op}")
            )
        except ReplayNotFoundError as exc:
            await websocket.send_json(_ws_error_payload(request_id=request_id, status=404, message=str(exc)))


@app.websocket("/api/ws/users/{user_id}/hands")
async def hands_socket(websocket: WebSocket, user_id: str) -> None:
    await websocket.accept()

    async def forward_hand_lists() -> None:
        async for summaries in manager.watch_hands(user_id):
            await websocket.send_json(
                {
                    "type": "hand_list",
                    "payload": [summary.model_dump(by_alias=True, mode="json") for summary in summaries],
                }
            )

    forwarder = asyncio.create_task(forward_hand_lists())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
    finally:
        forwarder.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await forwarder
