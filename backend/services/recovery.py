# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Security-question recovery.  Exactly three questions; answers are normalised and hashed."""

from typing import List, Sequence, Tuple

from sqlalchemy.orm import Session

from core.security import hash_password, verify_password
from models.security_question import SecurityQuestion
from models.user import User

QUESTION_COUNT = 3


def normalise_answer(answer: str) -> str:
    return " ".join((answer or "").strip().lower().split())


def set_questions(db: Session, user: User, pairs: Sequence[Tuple[str, str]]) -> None:
    """Replace the account's questions with *pairs* of ``(question, answer)``."""
    if len(pairs) != QUESTION_COUNT:
        raise ValueError(f"Exactly {QUESTION_COUNT} security questions are required")
    db.query(SecurityQuestion).filter(SecurityQuestion.user_id == user.id).delete(
        synchronize_session=False
    )
    for position, (question, answer) in enumerate(pairs):
        db.add(SecurityQuestion(
            user_id=user.id,
            position=position,
            question=question.strip(),
            answer_hash=hash_password(normalise_answer(answer)),
        ))
    db.commit()


def get_questions(db: Session, user: User) -> List[SecurityQuestion]:
    return (
        db.query(SecurityQuestion)
        .filter(SecurityQuestion.user_id == user.id)
        .order_by(SecurityQuestion.position)
        .all()
    )


def verify_answers(db: Session, user: User, answers: Sequence[str]) -> bool:
    """All three answers must match, in order."""
    questions = get_questions(db, user)
    if len(questions) != QUESTION_COUNT or len(answers) != QUESTION_COUNT:
        return False
    results = [
        verify_password(normalise_answer(answer), q.answer_hash)
        for q, answer in zip(questions, answers)
    ]
    return all(results)
