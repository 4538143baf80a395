import logging

from fastapi import APIRouter, HTTPException, status

from ....core.errors import (
    HostMismatchError,
    InvalidAnswerError,
    InvalidNameError,
    InvalidTransitionError,
    LiveQuizError,
    NameTakenError,
    ParticipantNotFoundError,
    SessionNotFoundError,
    StoreError,
)
from ....domain.model import Session
from ....schemas.quiz_schemas import (
    AnswerAckOut,
    AnswerIn,
    AnswerOut,
    HostCommandIn,
    JoinIn,
    JoinOut,
    ParticipantOut,
    QuestionSummaryOut,
    SessionCreatedOut,
    SessionOut,
    StandingOut,
)
from ...deps import ServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

_STATUS_CODES = [
    ((SessionNotFoundError, ParticipantNotFoundError), status.HTTP_404_NOT_FOUND),
    ((NameTakenError, InvalidTransitionError), status.HTTP_409_CONFLICT),
    ((HostMismatchError,), status.HTTP_403_FORBIDDEN),
    ((InvalidAnswerError, InvalidNameError), status.HTTP_422_UNPROCESSABLE_ENTITY),
    ((StoreError,), status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http(e: LiveQuizError) -> HTTPException:
    for types, code in _STATUS_CODES:
        if isinstance(e, types):
            if code >= 500:
                logger.error("store failure: %s", e)
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def session_out(session: Session, total_questions: int) -> SessionOut:
    d = session.to_dict()
    return SessionOut(**d, totalQuestions=total_questions)


@router.post("/", response_model=SessionCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_session(svc: ServiceDep):
    try:
        hs = await svc.create_session()
    except LiveQuizError as e:
        raise to_http(e)
    return SessionCreatedOut(code=hs.code, sessionId=hs.session_id, hostId=hs.host_id)


@router.get("/{code}", response_model=SessionOut)
async def get_session(code: str, svc: ServiceDep):
    try:
        session = await svc.get_session(code)
    except LiveQuizError as e:
        raise to_http(e)
    return session_out(session, len(svc.bank))


@router.post("/{code}/participants", response_model=JoinOut, status_code=status.HTTP_201_CREATED)
async def join_session(code: str, payload: JoinIn, svc: ServiceDep):
    try:
        participant = await svc.join_session(code, payload.name)
    except LiveQuizError as e:
        raise to_http(e)
    return JoinOut(participantId=participant.id, name=participant.name, code=code.strip().upper())


@router.get("/{code}/participants", response_model=list[ParticipantOut])
async def list_participants(code: str, svc: ServiceDep):
    try:
        standings = await svc.rankings(code)
    except LiveQuizError as e:
        raise to_http(e)
    return [ParticipantOut(**s.participant.to_dict()) for s in standings]


@router.post("/{code}/start", response_model=SessionOut)
async def start_quiz(code: str, payload: HostCommandIn, svc: ServiceDep):
    try:
        session = await svc.start_quiz(code, payload.hostId)
    except LiveQuizError as e:
        raise to_http(e)
    return session_out(session, len(svc.bank))


@router.post("/{code}/advance", response_model=SessionOut)
async def advance_question(code: str, payload: HostCommandIn, svc: ServiceDep):
    try:
        session = await svc.advance_question(code, payload.hostId)
    except LiveQuizError as e:
        raise to_http(e)
    return session_out(session, len(svc.bank))


@router.post("/{code}/reveal", response_model=SessionOut)
async def reveal_rankings(code: str, payload: HostCommandIn, svc: ServiceDep):
    try:
        session = await svc.reveal_rankings(code, payload.hostId)
    except LiveQuizError as e:
        raise to_http(e)
    return session_out(session, len(svc.bank))


@router.post("/{code}/answers", response_model=AnswerAckOut)
async def submit_answer(code: str, payload: AnswerIn, svc: ServiceDep):
    try:
        session = await svc.get_session(code)
        participant = await svc.get_participant(payload.participantId)
        if participant.session_id != session.id:
            raise ParticipantNotFoundError(payload.participantId)
        answer = await svc.submit_answer(payload.participantId, payload.questionIndex, payload.value())
    except LiveQuizError as e:
        raise to_http(e)
    # a late submission is a no-op, not an error
    if answer is None:
        return AnswerAckOut(accepted=False)
    return AnswerAckOut(accepted=True, answer=AnswerOut(**answer.to_dict()))


@router.get("/{code}/rankings", response_model=list[StandingOut])
async def rankings(code: str, svc: ServiceDep):
    try:
        standings = await svc.rankings(code)
    except LiveQuizError as e:
        raise to_http(e)
    return [
        StandingOut(
            position=s.position,
            participantId=s.participant.id,
            name=s.participant.name,
            totalScore=s.participant.total_score,
        )
        for s in standings
    ]


@router.get("/{code}/questions/{question_index}/summary", response_model=QuestionSummaryOut)
async def question_summary(code: str, question_index: int, svc: ServiceDep):
    if not 0 <= question_index < len(svc.bank):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Question not found")
    try:
        summary = await svc.question_summary(code, question_index)
    except LiveQuizError as e:
        raise to_http(e)
    return summary
