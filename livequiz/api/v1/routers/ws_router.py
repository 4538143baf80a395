import asyncio
import json
import logging
from contextlib import suppress
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from pydantic import BaseModel, ValidationError

from livequiz.api.deps import StoreDep, get_service
from livequiz.core.errors import LiveQuizError
from livequiz.domain.model import Session
from livequiz.schemas.quiz_schemas import TIMEOUT_OPTION
from livequiz.services.live_view import LiveSessionView
from livequiz.ws.schemas import (
    AnswerAck,
    AnswersUpdate,
    ConnectionUpdate,
    ErrorMessage,
    ParticipantsUpdate,
    PlayerAnswer,
    ServerStateSync,
    TimerTick,
)

logger = logging.getLogger(__name__)

ws_router = APIRouter()

# connection quality is re-evaluated on this cadence, like the UI indicator
QUALITY_INTERVAL = 1.0


class _Sender:
    """Serializes frames onto one websocket from several tasks."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._lock = asyncio.Lock()
        self.closed = False

    async def send(self, message: BaseModel) -> None:
        if self.closed:
            return
        async with self._lock:
            try:
                await self.websocket.send_text(message.model_dump_json())
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug("send failed, marking socket closed: %s", e)
                self.closed = True

    async def error(self, message: str) -> None:
        await self.send(ErrorMessage(message=message))


@ws_router.websocket("/ws")
async def ws_endpoint(
    websocket: WebSocket,
    store: StoreDep,
    role: str = Query(pattern="^(host|player)$"),
    roomCode: str = Query(...),
    participantId: str | None = Query(default=None),
    hostId: str | None = Query(default=None),
) -> None:
    await websocket.accept()
    sender = _Sender(websocket)
    svc = get_service(store)
    code = roomCode.strip().upper()
    logger.info("websocket connect: role=%s room=%s", role, code)

    try:
        session = await svc.get_session(code)
        if role == "player":
            if participantId is None:
                raise LiveQuizError("participantId is required for players")
            participant = await svc.get_participant(participantId)
            if participant.session_id != session.id:
                raise LiveQuizError("participant does not belong to this session")
    except LiveQuizError as e:
        logger.info("websocket rejected for %s: %s", code, e)
        await sender.error(str(e))
        await websocket.close()
        return

    player_id = participantId if role == "player" else None
    last_second: dict[str, Optional[int]] = {"value": None}

    async def on_session(s: Session) -> None:
        question = svc.bank.get(s.current_question_index)
        await sender.send(
            ServerStateSync(
                roomCode=s.code,
                status=s.status.value,
                questionIndex=s.current_question_index,
                questionStartTime=s.to_dict()["questionStartTime"],
                totalQuestions=len(svc.bank),
                question=question.to_public_dict(s.current_question_index) if question and s.is_active else None,
                participantId=player_id,
            )
        )

    async def on_participants(participants) -> None:
        await sender.send(ParticipantsUpdate(participants=[p.to_dict() for p in participants]))

    async def on_answers(answers) -> None:
        await sender.send(
            AnswersUpdate(
                questionIndex=view.session.current_question_index if view.session else None,
                answers=[a.to_dict() for a in answers],
                hasAnswered=view.has_answered,
            )
        )

    def on_tick(remaining: int) -> None:
        # one frame per displayed second
        second = -(-remaining // 1000)
        if second == last_second["value"]:
            return
        last_second["value"] = second
        asyncio.ensure_future(sender.send(TimerTick(remainingMs=remaining)))

    view = LiveSessionView(
        store,
        svc,
        code,
        participant_id=player_id,
        host_id=hostId if role == "host" else None,
        on_session_update=on_session,
        on_participants_update=on_participants,
        on_answers_update=on_answers,
        on_tick=on_tick,
    )

    async def report_quality() -> None:
        last = None
        while True:
            await asyncio.sleep(QUALITY_INTERVAL)
            frame = ConnectionUpdate(quality=view.quality().value, degraded=view.degraded)
            if frame != last:
                await sender.send(frame)
                last = frame

    quality_task: Optional[asyncio.Task] = None
    try:
        await view.open()
        quality_task = asyncio.create_task(report_quality())

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await sender.error("Malformed message")
                continue
            t = data.get("type")
            logger.debug("event %s from %s in %s", t, role, code)

            try:
                if t in ("host:start_quiz", "host:advance_question", "host:reveal_rankings"):
                    if role != "host":
                        await sender.error("Only the host can do that")
                        continue
                    if t == "host:start_quiz":
                        await svc.start_quiz(code, hostId)
                    elif t == "host:advance_question":
                        await svc.advance_question(code, hostId)
                    else:
                        await svc.reveal_rankings(code, hostId)

                elif t == "player:answer":
                    if player_id is None:
                        await sender.error("Player not registered")
                        continue
                    evt = PlayerAnswer(**data)
                    value = None if evt.optionIndex in (None, TIMEOUT_OPTION) else evt.optionIndex
                    answer = await svc.submit_answer(player_id, evt.questionIndex, value)
                    await sender.send(AnswerAck(ok=answer is not None))

                else:
                    await sender.error(f"Unknown event type: {t}")

            except ValidationError as e:
                await sender.error(f"Invalid payload: {e.errors()[0].get('msg')}")
            except LiveQuizError as e:
                # user-initiated command failed; the client may retry
                logger.info("command %s failed in %s: %s", t, code, e)
                await sender.error(str(e))

    except WebSocketDisconnect:
        logger.info("websocket disconnect: %s (%s) from %s", role, player_id or "host", code)

    finally:
        sender.closed = True
        if quality_task is not None:
            quality_task.cancel()
            with suppress(asyncio.CancelledError):
                await quality_task
        await view.close()
