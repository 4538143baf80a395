from pydantic import BaseModel, Field
from typing import List, Literal, Optional


# --- inbound (client -> server) ---

class PlayerAnswer(BaseModel):
    type: Literal["player:answer"] = "player:answer"
    questionIndex: int = Field(..., ge=0)
    # -1 or null: timeout
    optionIndex: Optional[int] = None


# --- outbound (server -> client) ---

class ServerStateSync(BaseModel):
    type: Literal["state_sync"] = "state_sync"
    roomCode: str
    status: Literal["waiting", "active", "showing_results", "finished"]
    questionIndex: int
    questionStartTime: Optional[str] = None
    totalQuestions: int
    question: Optional[dict] = None
    participantId: Optional[str] = None


class ParticipantsUpdate(BaseModel):
    type: Literal["participants"] = "participants"
    participants: List[dict]


class AnswersUpdate(BaseModel):
    type: Literal["answers"] = "answers"
    questionIndex: Optional[int] = None
    answers: List[dict]
    hasAnswered: bool = False


class TimerTick(BaseModel):
    type: Literal["tick"] = "tick"
    remainingMs: int


class ConnectionUpdate(BaseModel):
    type: Literal["connection"] = "connection"
    quality: Literal["excellent", "good", "poor", "offline"]
    degraded: bool


class AnswerAck(BaseModel):
    type: Literal["answer_ack"] = "answer_ack"
    ok: bool


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str
