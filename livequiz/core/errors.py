class LiveQuizError(Exception):
    """Base class for every error raised by the live quiz core."""


class StoreError(LiveQuizError):
    """A read or write against the backing store failed."""


class DuplicateRowError(StoreError):
    """A unique constraint of the store rejected an insert."""

    def __init__(self, collection: str, key: tuple) -> None:
        super().__init__(f"duplicate row in {collection} for {key!r}")
        self.collection = collection
        self.key = key


class SessionNotFoundError(LiveQuizError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Session {code} not found")
        self.code = code


class ParticipantNotFoundError(LiveQuizError):
    def __init__(self, participant_id: str) -> None:
        super().__init__(f"Participant {participant_id} not found")
        self.participant_id = participant_id


class NameTakenError(LiveQuizError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Name {name!r} is already taken in this session")
        self.name = name


class HostMismatchError(LiveQuizError):
    """A host command was issued with the wrong host identifier."""


class InvalidTransitionError(LiveQuizError):
    """A host command is not valid for the session's current phase."""

    def __init__(self, command: str, status: str) -> None:
        super().__init__(f"Cannot {command} while session is {status}")
        self.command = command
        self.status = status


class InvalidAnswerError(LiveQuizError):
    pass


class InvalidNameError(LiveQuizError):
    pass
