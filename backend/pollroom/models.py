import random
import string
import time
from typing import Any, Callable, Dict, List, Optional


CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(code) -> str:
    return str(code or '').strip().upper()


def generate_room_code(exists: Callable[[str], bool], length: int = 6) -> str:
    """Generate a short room code not accepted by ``exists``."""
    while True:
        code = ''.join(random.choices(CODE_ALPHABET, k=length))
        if not exists(code):
            return code


class Question:
    def __init__(self, payload: Dict[str, Any], timer_seconds: int):
        # Caller content is opaque; timer and responses are ours
        self.payload = {k: v for k, v in payload.items() if k not in ('timer', 'responses')}
        self.timer_seconds = timer_seconds
        self.responses: Dict[str, Any] = {}

    def to_dict(self):
        data = dict(self.payload)
        data['timer'] = self.timer_seconds
        data['responses'] = dict(self.responses)
        return data


class Student:
    def __init__(self, name: str):
        self.name = name
        self.answers: Dict[int, Any] = {}

    def to_dict(self):
        return {'answers': {str(idx): answer for idx, answer in sorted(self.answers.items())}}


class Room:
    def __init__(self, code: str, admin_name: str):
        self.code = code
        self.admin_name = admin_name
        self.questions: List[Question] = []
        self.students: Dict[str, Student] = {}
        self.current_question: Optional[Question] = None
        self.timer_remaining = 0
        self.created_at = time.time()
        self.last_activity = self.created_at

    @property
    def is_active(self) -> bool:
        return self.current_question is not None

    def touch(self) -> None:
        self.last_activity = time.time()

    def to_dict(self):
        return {
            'code': self.code,
            'admin': self.admin_name,
            'questions': [q.to_dict() for q in self.questions],
            'students': {name: s.to_dict() for name, s in self.students.items()},
            'currentQuestion': self.current_question.to_dict() if self.current_question else None,
            'timer': self.timer_remaining,
        }
