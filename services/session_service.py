import asyncio
from typing import Callable, Dict, List, Optional

from core.config import settings
from core.exceptions import SaveFailed, SessionClosed, StorageUnavailable
from core.logger import logger
from models.identity import SessionIdentity, SessionFilter, ExamKind
from models.session import ExamSession
from services.content_service import ContentService
from services.live_session import LiveSession, SessionSnapshot, SessionState
from services.session_resolver import SessionResolver
from services.session_store import SessionStore
from services.task_manager import TaskManager, task_manager
from services.timer_service import ExamTimer


class SessionService:
    """
    Opens, resumes, advances, saves, completes and restarts practice-test sessions.

    One LiveSession per identity is kept in memory. Every mutation happens under
    the session lock and is followed by a full save of the session and its
    answers; save failures are logged and never abort the exam.
    """

    def __init__(
        self,
        store: SessionStore = None,
        content: ContentService = None,
        tasks: TaskManager = None,
        exam_duration: int = None,
        questions_per_pass: int = None,
        tick_seconds: float = None,
        checkpoint_interval: int = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.store = store or SessionStore()
        self.resolver = SessionResolver(self.store)
        self.content = content or ContentService()
        self.tasks = tasks or task_manager
        self.exam_duration = settings.EXAM_DURATION_SECONDS if exam_duration is None else exam_duration
        self.questions_per_pass = questions_per_pass or settings.QUESTIONS_PER_PASS
        self.tick_seconds = tick_seconds
        self.checkpoint_interval = checkpoint_interval
        self._sleep = sleep
        self._live: Dict[str, LiveSession] = {}
        self._timers: Dict[str, ExamTimer] = {}
        self._open_locks: Dict[SessionIdentity, asyncio.Lock] = {}
        # Completed sessions whose completing save has not reached the store yet
        self._unsaved_completions: Dict[str, LiveSession] = {}

    # Reads

    @property
    def live_sessions(self) -> List[LiveSession]:
        return list(self._live.values())

    def get_live(self, identity: SessionIdentity) -> Optional[LiveSession]:
        for live in self._live.values():
            if live.identity == identity:
                return live
        return None

    async def find_open_session(self, identity: SessionIdentity) -> Optional[ExamSession]:
        return await self.resolver.find_open_session(identity)

    async def has_any_open_session(self, predicate: Callable[[SessionIdentity], bool]) -> bool:
        return await self.resolver.has_any_open_session(predicate)

    async def list_sessions(self, session_filter: SessionFilter = None) -> List[ExamSession]:
        return await self.store.list_sessions(session_filter)

    def answer_options(self, live: LiveSession) -> List[str]:
        return self.content.options_for(live.identity.test_kind, live.current_question_number)

    # Lifecycle

    async def open_session(self, identity: SessionIdentity, timer_enabled: bool = True) -> LiveSession:
        """
        Resume the identity's open session, or create and persist a new one.
        timer_enabled only applies to a new session; a resumed one keeps its mode.
        """
        lock = self._open_locks.setdefault(identity, asyncio.Lock())
        async with lock:
            live = self.get_live(identity)
            if live is not None:
                return live
            await self._flush_completions(identity)
            return await self._load_or_create(identity, timer_enabled)

    async def _load_or_create(self, identity: SessionIdentity, timer_enabled: bool) -> LiveSession:
        row = await self.resolver.find_open_session(identity)
        if row is None:
            stale = await self.resolver.open_sessions(identity)
            if stale:
                await self.store.delete([r.id for r in stale])
                logger.warning("Discarded malformed exam sessions", identity=identity.label(), count=len(stale))

            row = await self.store.create(identity, timer_enabled, self.exam_duration)
            live = LiveSession.from_row(row)
            logger.info("Exam session created", session_id=live.id, identity=identity.label(), timer_enabled=timer_enabled)
        else:
            live = LiveSession.from_row(row)
            logger.info(
                "Exam session resumed",
                session_id=live.id,
                identity=identity.label(),
                question=live.current_question_number,
                answered=len(live.ledger),
                time_remaining=live.time_remaining,
            )

        self._live[live.id] = live
        await self._start_timer(live)
        return live

    async def record_answer(self, live: LiveSession, question_number: int, option: str) -> Optional[str]:
        """
        Select option for a question; selecting the already chosen option clears it.
        Returns the resulting selection. The option is stored as given.
        """
        self._check_question(question_number)
        async with live.lock:
            self._ensure_active(live)
            selected = live.ledger.toggle(question_number, option)
            live.touch()
            snapshot = live.snapshot()
        await self._persist(live, snapshot)
        return selected

    async def advance(self, live: LiveSession, delta: int = 1) -> int:
        """
        Move the question pointer by delta, clamped to the pass.
        Moving past the last question once it is answered completes the session.
        """
        finish = False
        async with live.lock:
            self._ensure_active(live)
            current = live.current_question_number
            target = current + delta
            if target > self.questions_per_pass:
                finish = current == self.questions_per_pass and live.ledger.get(current) is not None
            if not finish:
                live.current_question_number = max(1, min(self.questions_per_pass, target))
                live.touch()
                snapshot = live.snapshot()

        if finish:
            await self.complete(live, reason="finished")
        else:
            await self._persist(live, snapshot)
        return live.current_question_number

    async def jump_to(self, live: LiveSession, question_number: int) -> int:
        async with live.lock:
            self._ensure_active(live)
            live.current_question_number = max(1, min(self.questions_per_pass, question_number))
            live.touch()
            snapshot = live.snapshot()
        await self._persist(live, snapshot)
        return live.current_question_number

    async def complete(self, live: LiveSession, reason: str = "finished") -> bool:
        """Mark the session completed. Returns False if it already was (or is no longer live)."""
        async with live.lock:
            if not live.is_active:
                return False
            live.state = SessionState.COMPLETED
            if reason == "timeout":
                live.time_remaining = 0
            live.touch()
            snapshot = live.snapshot()

        self._stop_timer(live)
        saved = await self._persist(live, snapshot)
        self._live.pop(live.id, None)
        if not saved:
            self._unsaved_completions[live.id] = live
        logger.info(
            "Exam session completed",
            session_id=live.id,
            identity=live.identity.label(),
            reason=reason,
            answered=len(live.ledger),
            time_remaining=live.time_remaining,
        )
        return True

    async def close(self, live: LiveSession):
        """The exam screen was left: stop the timer and save where the user is."""
        self._stop_timer(live)
        async with live.lock:
            was_active = live.is_active
            if was_active:
                live.state = SessionState.CLOSED
                snapshot = live.snapshot()
        if was_active:
            await self._persist(live, snapshot)
            logger.info("Exam session closed", session_id=live.id, question=live.current_question_number)
        self._live.pop(live.id, None)

    async def restart(self, identity: SessionIdentity) -> int:
        """Delete every session of the identity, completed ones included."""
        self._drop_completions(lambda i: i == identity)
        live = self.get_live(identity)
        if live is not None:
            await self._discard(live)

        rows = await self.store.list_sessions(SessionFilter(identity=identity))
        if not rows:
            logger.debug("No exam sessions to restart", identity=identity.label())
            return 0
        count = await self.store.delete([row.id for row in rows])
        logger.info("Exam sessions restarted", identity=identity.label(), count=count)
        return count

    async def restart_all(self, test_kind: ExamKind, pass_number: int = 0) -> int:
        """Delete all sessions of a kind and pass number regardless of historical date."""
        self._drop_completions(lambda i: i.test_kind == test_kind and i.pass_number == pass_number)
        for live in self.live_sessions:
            if live.identity.test_kind == test_kind and live.identity.pass_number == pass_number:
                await self._discard(live)

        deleted = await self.store.delete_matching(SessionFilter(test_kind=test_kind, pass_number=pass_number))
        if not deleted:
            logger.debug("No exam sessions to restart", test_kind=test_kind.value, pass_number=pass_number)
        else:
            logger.info("Exam sessions restarted", test_kind=test_kind.value, pass_number=pass_number, count=len(deleted))
        return len(deleted)

    # Timer callbacks

    async def tick(self, live: LiveSession) -> Optional[int]:
        """One timer tick. Returns the remaining seconds, or None once the session is not running."""
        async with live.lock:
            if not live.is_active or not live.timer_enabled:
                return None
            if live.time_remaining > 0:
                live.time_remaining -= 1
                live.touch()
            return live.time_remaining

    async def checkpoint(self, live: LiveSession) -> bool:
        async with live.lock:
            if not live.is_active:
                return False
            snapshot = live.snapshot()
        saved = await self._persist(live, snapshot)
        logger.debug("Exam checkpoint", session_id=live.id, time_remaining=snapshot.time_remaining, saved=saved)
        return saved

    # Internals

    def _check_question(self, question_number: int):
        if not 1 <= question_number <= self.questions_per_pass:
            raise ValueError(f"Question number must be within 1..{self.questions_per_pass}, got {question_number}")

    def _ensure_active(self, live: LiveSession):
        if not live.is_active:
            raise SessionClosed(live.id, live.state.value)

    async def _start_timer(self, live: LiveSession):
        if not live.timer_enabled or not live.is_active:
            return
        if live.time_remaining <= 0:
            await self.complete(live, reason="timeout")
            return
        timer = ExamTimer(
            self,
            live,
            tick_seconds=self.tick_seconds,
            checkpoint_interval=self.checkpoint_interval,
            tasks=self.tasks,
            sleep=self._sleep,
        )
        self._timers[live.id] = timer
        timer.start()

    def _stop_timer(self, live: LiveSession):
        timer = self._timers.pop(live.id, None)
        if timer is not None:
            timer.stop()

    async def _flush_completions(self, identity: SessionIdentity):
        """Retry completing saves that failed; the store must not hand them back as open."""
        pending = [live for live in self._unsaved_completions.values() if live.identity == identity]
        for live in pending:
            async with live.lock:
                snapshot = live.snapshot()
            if not await self._persist(live, snapshot):
                raise StorageUnavailable(f"Completed session {live.id} could not be saved")
            self._unsaved_completions.pop(live.id, None)
            logger.info("Completed exam session saved on retry", session_id=live.id)

    def _drop_completions(self, predicate: Callable[[SessionIdentity], bool]):
        for session_id, live in list(self._unsaved_completions.items()):
            if predicate(live.identity):
                del self._unsaved_completions[session_id]

    async def _discard(self, live: LiveSession):
        self._stop_timer(live)
        async with live.lock:
            live.state = SessionState.DISCARDED
        # Let an in-flight save finish before the rows go away
        async with live.save_lock:
            pass
        self._live.pop(live.id, None)
        logger.info("Live exam session discarded", session_id=live.id, identity=live.identity.label())

    async def _persist(self, live: LiveSession, snapshot: SessionSnapshot) -> bool:
        # Shielded: leaving the screen cancels the caller, not the write
        return await asyncio.shield(self._write(live, snapshot))

    async def _write(self, live: LiveSession, snapshot: SessionSnapshot) -> bool:
        async with live.save_lock:
            if live.state == SessionState.DISCARDED:
                return False
            if snapshot.version <= live.saved_version:
                return True
            try:
                live.last_updated = await self.store.save(snapshot)
            except SaveFailed as e:
                logger.error("Exam session not saved, keeping in-memory state", session_id=live.id, error=str(e))
                return False
            live.saved_version = snapshot.version
            return True
