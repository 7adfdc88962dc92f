from __future__ import annotations

import itertools
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from threading import Lock
from typing import Dict, List, Optional

from .errors import InvalidRequest, NotFound

ROLES = ("user", "assistant")
CHRONOLOGICAL = "chronological"
REVERSE_CHRONOLOGICAL = "reverse-chronological"
ORDERS = (CHRONOLOGICAL, REVERSE_CHRONOLOGICAL)

DEFAULT_EXAM_TARGET = "NEET PG"
DEFAULT_STAGE = "Beginner"
DEFAULT_CHECK_IN_TIME = "07:00"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    name: str
    email: str
    exam_target: str = DEFAULT_EXAM_TARGET
    preparation_stage: str = DEFAULT_STAGE
    check_in_time: str = DEFAULT_CHECK_IN_TIME
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Turn:
    id: int
    user_id: str
    role: str  # "user" | "assistant"
    content: str
    timestamp: datetime

    @property
    def sort_key(self):
        return (self.timestamp, self.id)


@dataclass
class Stats:
    user_id: str
    total_check_ins: int = 0
    last_check_in: Optional[date] = None
    total_study_hours: float = 0.0
    current_streak: int = 0


@dataclass
class CheckIn:
    id: int
    user_id: str
    study_hours: float
    subjects: List[str]
    mood_rating: Optional[int]
    challenges: str
    timestamp: datetime


def new_user_id() -> str:
    return uuid.uuid4().hex


def check_role(role: str) -> None:
    if role not in ROLES:
        raise InvalidRequest(f"role must be one of {ROLES}, got {role!r}")


def check_order(order: str) -> None:
    if order not in ORDERS:
        raise ValueError(f"order must be one of {ORDERS}, got {order!r}")


def advance_stats(stats: Stats, day: date, study_hours: float) -> Stats:
    """Stats after one more check-in on `day`. Same-day repeats keep the streak."""
    if stats.last_check_in == day:
        streak = stats.current_streak or 1
    elif stats.last_check_in == day - timedelta(days=1):
        streak = stats.current_streak + 1
    else:
        streak = 1
    return replace(
        stats,
        total_check_ins=stats.total_check_ins + 1,
        last_check_in=day,
        total_study_hours=stats.total_study_hours + (study_hours or 0.0),
        current_streak=streak,
    )


class ConversationStore(ABC):
    """Users, their ordered chat turns, check-ins and stats.

    `append` refuses unknown users with NotFound. Reads for an unknown user
    return an empty result instead.
    """

    @abstractmethod
    def create_user(
        self,
        name: str,
        email: str,
        exam_target: Optional[str] = None,
        preparation_stage: Optional[str] = None,
        check_in_time: Optional[str] = None,
    ) -> User: ...

    @abstractmethod
    def get_user(self, user_id: str) -> User: ...

    @abstractmethod
    def append(self, user_id: str, role: str, content: str) -> int: ...

    @abstractmethod
    def recent_turns(self, user_id: str, limit: int, order: str = CHRONOLOGICAL) -> List[Turn]: ...

    @abstractmethod
    def all_turns(self, user_id: str) -> List[Turn]: ...

    @abstractmethod
    def record_check_in(
        self,
        user_id: str,
        study_hours: float,
        subjects: List[str],
        mood_rating: Optional[int],
        challenges: str,
    ) -> CheckIn: ...

    @abstractmethod
    def get_stats(self, user_id: str) -> Optional[Stats]: ...

    def ping(self) -> bool:
        return True


class InMemoryStore(ConversationStore):
    """Thread-safe in-RAM store for tests and database-less runs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ids = itertools.count(1)
        self._users: Dict[str, User] = {}
        self._turns: Dict[str, List[Turn]] = {}
        self._stats: Dict[str, Stats] = {}
        self._check_ins: Dict[str, List[CheckIn]] = {}

    def create_user(self, name, email, exam_target=None, preparation_stage=None, check_in_time=None):
        with self._lock:
            if any(u.email == email for u in self._users.values()):
                raise InvalidRequest(f"email already registered: {email}")
            user = User(
                id=new_user_id(),
                name=name,
                email=email,
                exam_target=exam_target or DEFAULT_EXAM_TARGET,
                preparation_stage=preparation_stage or DEFAULT_STAGE,
                check_in_time=check_in_time or DEFAULT_CHECK_IN_TIME,
            )
            self._users[user.id] = user
            self._stats[user.id] = Stats(user_id=user.id)
            return replace(user)

    def get_user(self, user_id):
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFound(f"user not found: {user_id}")
            return replace(user)

    def append(self, user_id, role, content):
        check_role(role)
        with self._lock:
            if user_id not in self._users:
                raise NotFound(f"user not found: {user_id}")
            turns = self._turns.setdefault(user_id, [])
            ts = utcnow()
            # keep timestamps non-decreasing even if the wall clock steps back
            if turns and ts < turns[-1].timestamp:
                ts = turns[-1].timestamp
            turn = Turn(id=next(self._ids), user_id=user_id, role=role, content=content, timestamp=ts)
            turns.append(turn)
            return turn.id

    def recent_turns(self, user_id, limit, order=CHRONOLOGICAL):
        check_order(order)
        if limit <= 0:
            return []
        with self._lock:
            window = list(self._turns.get(user_id, [])[-limit:])
        if order == REVERSE_CHRONOLOGICAL:
            window.reverse()
        return window

    def all_turns(self, user_id):
        with self._lock:
            return list(self._turns.get(user_id, []))

    def record_check_in(self, user_id, study_hours, subjects, mood_rating, challenges):
        with self._lock:
            if user_id not in self._users:
                raise NotFound(f"user not found: {user_id}")
            entry = CheckIn(
                id=next(self._ids),
                user_id=user_id,
                study_hours=study_hours or 0.0,
                subjects=list(subjects or []),
                mood_rating=mood_rating,
                challenges=challenges or "",
                timestamp=utcnow(),
            )
            self._check_ins.setdefault(user_id, []).append(entry)

        with self._lock:
            stats = self._stats.get(user_id) or Stats(user_id=user_id)
            self._stats[user_id] = advance_stats(stats, entry.timestamp.date(), entry.study_hours)
        return entry

    def get_stats(self, user_id):
        with self._lock:
            stats = self._stats.get(user_id)
            return replace(stats) if stats else None
