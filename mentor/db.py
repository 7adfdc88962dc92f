"""Relational ConversationStore backed by SQLAlchemy.

Production runs against Postgres (psycopg2, TLS without certificate
verification, as the hosted database requires); tests and local runs use
SQLite. Tables are created on first use; there is no migration tooling.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import InvalidRequest, NotFound, StoreUnavailable
from .store import (
    CHRONOLOGICAL,
    DEFAULT_CHECK_IN_TIME,
    DEFAULT_EXAM_TARGET,
    DEFAULT_STAGE,
    CheckIn,
    ConversationStore,
    Stats,
    Turn,
    User,
    advance_stats,
    check_order,
    check_role,
    new_user_id,
    utcnow,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"
    id = Column(String(32), primary_key=True, default=new_user_id)
    name = Column(Text, nullable=False)
    email = Column(String(320), unique=True, nullable=False)
    exam_target = Column(Text, nullable=False, default=DEFAULT_EXAM_TARGET)
    preparation_stage = Column(Text, nullable=False, default=DEFAULT_STAGE)
    check_in_time = Column(String(16), nullable=False, default=DEFAULT_CHECK_IN_TIME)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class TurnRow(Base):
    __tablename__ = "conversations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    sender = Column(String(16), CheckConstraint("sender IN ('user','assistant')"), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class StatsRow(Base):
    __tablename__ = "user_stats"
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    total_check_ins = Column(Integer, nullable=False, default=0)
    last_check_in = Column(Date, nullable=True)
    total_study_hours = Column(Float, nullable=False, default=0.0)
    current_streak = Column(Integer, nullable=False, default=0)


class CheckInRow(Base):
    __tablename__ = "check_ins"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    study_hours = Column(Float, nullable=False, default=0.0)
    subjects = Column(JSON, nullable=False, default=list)
    mood_rating = Column(Integer, nullable=True)
    challenges = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)


def make_engine(url: str, ssl: bool = True):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    connect_args = {"sslmode": "require"} if ssl and url.startswith("postgresql") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def _user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        exam_target=row.exam_target,
        preparation_stage=row.preparation_stage,
        check_in_time=row.check_in_time,
        created_at=row.created_at,
    )


def _turn(row: TurnRow) -> Turn:
    return Turn(id=row.id, user_id=row.user_id, role=row.sender, content=row.content, timestamp=row.timestamp)


def _stats(row: StatsRow) -> Stats:
    return Stats(
        user_id=row.user_id,
        total_check_ins=row.total_check_ins or 0,
        last_check_in=row.last_check_in,
        total_study_hours=row.total_study_hours or 0.0,
        current_streak=row.current_streak or 0,
    )


class SqlStore(ConversationStore):
    def __init__(self, url: str, ssl: bool = True, create_tables: bool = True) -> None:
        self.engine = make_engine(url, ssl=ssl)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)
        # StaticPool hands every thread the same DBAPI connection
        shared = isinstance(self.engine.pool, StaticPool)
        self._guard = threading.RLock() if shared else nullcontext()
        if create_tables:
            try:
                Base.metadata.create_all(bind=self.engine)
            except SQLAlchemyError as e:
                # the app still starts; every request will report StoreUnavailable
                logger.error("DB connection error: %s", e)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._guard:
            db = self.SessionLocal()
            try:
                yield db
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Store query failed: %s", e)
                raise StoreUnavailable(f"store error: {e.__class__.__name__}") from e
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def ping(self) -> bool:
        try:
            with self._session() as db:
                db.execute(text("SELECT 1"))
            return True
        except StoreUnavailable:
            return False

    def create_user(self, name, email, exam_target=None, preparation_stage=None, check_in_time=None):
        with self._guard:
            db = self.SessionLocal()
            try:
                row = UserRow(
                    id=new_user_id(),
                    name=name,
                    email=email,
                    exam_target=exam_target or DEFAULT_EXAM_TARGET,
                    preparation_stage=preparation_stage or DEFAULT_STAGE,
                    check_in_time=check_in_time or DEFAULT_CHECK_IN_TIME,
                )
                db.add(row)
                db.flush()
                db.add(StatsRow(user_id=row.id))
                db.commit()
                return _user(row)
            except IntegrityError as e:
                db.rollback()
                raise InvalidRequest(f"email already registered: {email}") from e
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Create user failed: %s", e)
                raise StoreUnavailable(f"store error: {e.__class__.__name__}") from e
            finally:
                db.close()

    def get_user(self, user_id):
        with self._session() as db:
            row = db.get(UserRow, user_id)
            if row is None:
                raise NotFound(f"user not found: {user_id}")
            return _user(row)

    def append(self, user_id, role, content):
        check_role(role)
        with self._session() as db:
            if db.get(UserRow, user_id) is None:
                raise NotFound(f"user not found: {user_id}")
            row = TurnRow(user_id=user_id, sender=role, content=content, timestamp=utcnow())
            db.add(row)
            db.flush()
            return row.id

    def recent_turns(self, user_id, limit, order=CHRONOLOGICAL):
        check_order(order)
        if limit <= 0:
            return []
        stmt = (
            select(TurnRow)
            .where(TurnRow.user_id == user_id)
            .order_by(TurnRow.timestamp.desc(), TurnRow.id.desc())
            .limit(limit)
        )
        with self._session() as db:
            turns = [_turn(r) for r in db.execute(stmt).scalars().all()]
        if order == CHRONOLOGICAL:
            turns.reverse()
        return turns

    def all_turns(self, user_id):
        stmt = select(TurnRow).where(TurnRow.user_id == user_id).order_by(TurnRow.timestamp, TurnRow.id)
        with self._session() as db:
            return [_turn(r) for r in db.execute(stmt).scalars().all()]

    def record_check_in(self, user_id, study_hours, subjects, mood_rating, challenges):
        with self._session() as db:
            if db.get(UserRow, user_id) is None:
                raise NotFound(f"user not found: {user_id}")
            row = CheckInRow(
                user_id=user_id,
                study_hours=study_hours or 0.0,
                subjects=list(subjects or []),
                mood_rating=mood_rating,
                challenges=challenges or "",
                timestamp=utcnow(),
            )
            db.add(row)
            db.flush()
            entry = CheckIn(
                id=row.id,
                user_id=user_id,
                study_hours=row.study_hours,
                subjects=list(row.subjects),
                mood_rating=row.mood_rating,
                challenges=row.challenges,
                timestamp=row.timestamp,
            )

        # separate transaction: a crash here loses only the stats bump
        with self._session() as db:
            stats_row = db.get(StatsRow, user_id)
            if stats_row is None:
                stats_row = StatsRow(user_id=user_id, total_check_ins=0, total_study_hours=0.0, current_streak=0)
                db.add(stats_row)
            updated = advance_stats(_stats(stats_row), entry.timestamp.date(), entry.study_hours)
            stats_row.total_check_ins = updated.total_check_ins
            stats_row.last_check_in = updated.last_check_in
            stats_row.total_study_hours = updated.total_study_hours
            stats_row.current_streak = updated.current_streak
        return entry

    def get_stats(self, user_id) -> Optional[Stats]:
        with self._session() as db:
            row = db.get(StatsRow, user_id)
            return _stats(row) if row else None


def build_store(url: Optional[str], ssl: bool = True) -> ConversationStore:
    if not url:
        from .store import InMemoryStore

        logger.warning("No database configured; using in-memory store")
        return InMemoryStore()
    return SqlStore(url, ssl=ssl)
