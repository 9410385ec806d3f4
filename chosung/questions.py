import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import InsufficientQuestions


@dataclass(frozen=True)
class QuestionRecord:
    clue: str
    category: str
    answer: str
    difficulty: int = 1


def normalize_answer(text: str) -> str:
    # submissions and canonical answers go through the same folding
    return (text or "").strip().casefold()


QUESTION_BANK = (
    QuestionRecord("ㅇㄴㅎㅅㅇ", "인사말", "안녕하세요", 1),
    QuestionRecord("ㄱㅈ", "간식", "과자", 2),
    QuestionRecord("ㅁㄱ", "동물", "몽구", 2),
    QuestionRecord("ㅅㅁㅌㅍ", "기술", "스마트폰", 3),
    QuestionRecord("ㅈㅈㄷ", "도시", "제주도", 3),
    QuestionRecord("ㅅㅂ", "과일", "수박", 1),
    QuestionRecord("ㄴㄱ", "지리", "남극", 2),
    QuestionRecord("ㅇㅍㅌ", "건축", "아파트", 1),
    QuestionRecord("ㅍㅇㄴ", "악기", "피아노", 3),
    QuestionRecord("ㄷㅈㅉㄱ", "요리", "된장찌개", 2),
)


def select_round(bank: Sequence[QuestionRecord], count: int, rng: Optional[random.Random] = None) -> List[QuestionRecord]:
    """Return `count` questions drawn from a uniform shuffle of `bank`.

    Raises InsufficientQuestions when the bank is smaller than the round.
    """
    if count < 1:
        raise ValueError("round size must be at least 1")
    if count > len(bank):
        raise InsufficientQuestions(count, len(bank))
    rng = rng or random.Random()
    deck = list(bank)
    rng.shuffle(deck)
    return deck[:count]
