from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Question:
    question_text: str
    answers: list[str]
    correct_answer: int
    # seconds
    time_limit: int = 30

    def is_correct(self, option_index: int) -> bool:
        return option_index == self.correct_answer

    def to_public_dict(self, position: int) -> dict:
        # answer key stays server-side until results are shown
        return {
            "position": position,
            "questionText": self.question_text,
            "answers": list(self.answers),
            "timeLimit": self.time_limit,
        }


class QuestionBank:
    """The fixed, ordered question list shared by every client of a session."""

    def __init__(self, questions: List[Question]) -> None:
        if not questions:
            raise ValueError("a quiz needs at least one question")
        self.questions = list(questions)

    def __len__(self) -> int:
        return len(self.questions)

    def get(self, index: int) -> Optional[Question]:
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None

    def time_limit(self, index: int, default: int = 30) -> int:
        q = self.get(index)
        return q.time_limit if q else default


QUIZ_QUESTIONS: List[Question] = [
    Question("What is the capital of France?", ["London", "Berlin", "Paris", "Madrid"], 2, 30),
    Question("Which planet is known as the Red Planet?", ["Venus", "Mars", "Jupiter", "Saturn"], 1, 30),
    Question("What is 2 + 2?", ["3", "4", "5", "6"], 1, 15),
    Question(
        "Who wrote 'Romeo and Juliet'?",
        ["Charles Dickens", "William Shakespeare", "Jane Austen", "Mark Twain"],
        1,
        30,
    ),
    Question(
        "What is the largest ocean on Earth?",
        ["Atlantic Ocean", "Indian Ocean", "Arctic Ocean", "Pacific Ocean"],
        3,
        30,
    ),
    Question("In which year did World War II end?", ["1943", "1944", "1945", "1946"], 2, 30),
    Question("What is the chemical symbol for gold?", ["Go", "Gd", "Au", "Ag"], 2, 20),
    Question(
        "Which programming language is known as the 'language of the web'?",
        ["Python", "Java", "JavaScript", "C++"],
        2,
        20,
    ),
    Question(
        "What is the speed of light in vacuum (approximately)?",
        ["300,000 km/s", "150,000 km/s", "450,000 km/s", "600,000 km/s"],
        0,
        30,
    ),
    Question(
        "Which mountain is the tallest in the world?",
        ["K2", "Mount Kilimanjaro", "Mount Everest", "Mount Fuji"],
        2,
        30,
    ),
]

DEFAULT_BANK = QuestionBank(QUIZ_QUESTIONS)
