from typing import Optional
from pydantic import BaseModel, Field, field_validator

# optionIndex value the UI sends when the countdown ran out
TIMEOUT_OPTION = -1


class HostCommandIn(BaseModel):
    hostId: str = Field(..., min_length=1)


class JoinIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=40)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class AnswerIn(BaseModel):
    participantId: str
    questionIndex: int = Field(..., ge=0)
    optionIndex: Optional[int] = Field(None, ge=TIMEOUT_OPTION)

    def value(self) -> Optional[int]:
        if self.optionIndex is None or self.optionIndex == TIMEOUT_OPTION:
            return None
        return self.optionIndex


class SessionCreatedOut(BaseModel):
    code: str
    sessionId: str
    hostId: str


class SessionOut(BaseModel):
    id: str
    code: str
    status: str
    currentQuestionIndex: int
    questionStartTime: Optional[str] = None
    totalQuestions: int


class ParticipantOut(BaseModel):
    id: str
    name: str
    totalScore: int


class JoinOut(BaseModel):
    participantId: str
    name: str
    code: str


class AnswerOut(BaseModel):
    id: str
    participantId: str
    questionIndex: int
    answer: Optional[int] = None
    isTimeout: bool
    isCorrect: bool
    responseTimeMs: int
    pointsAwarded: int


class AnswerAckOut(BaseModel):
    accepted: bool
    answer: Optional[AnswerOut] = None


class StandingOut(BaseModel):
    position: int
    participantId: str
    name: str
    totalScore: int


class QuestionSummaryOut(BaseModel):
    questionIndex: int
    answered: int
    correct: int
    timeouts: int
    distribution: dict[int, int]
    correctIndex: Optional[int] = None
