import logging
import threading
from typing import Callable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import config
from .alerts import AlertComposer
from .baseline import update_baselines
from .incidents import detect_file_deviations
from .rescan import scan_failed_logins

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs func once at start, then every `interval` seconds until stopped."""

    def __init__(self, name: str, interval: float, func: Callable[[], None]) -> None:
        self.name = name
        self.interval = interval
        self.func = func
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        try:
            self.func()
            return True
        except Exception:
            logger.exception("Error during %s pass.", self.name)
            return False

    def _loop(self) -> None:
        logger.info("%s started (every %ss).", self.name, self.interval)
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)
        logger.info("%s stopped.", self.name)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def _with_session(session_factory: sessionmaker, work: Callable[[Session], None]) -> Callable[[], None]:
    def run() -> None:
        db = session_factory()
        try:
            work(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    return run


class BackgroundServices:
    """The failed-login re-scan and the baseline learner, each on its own timer."""

    def __init__(
        self,
        session_factory: sessionmaker,
        composer_factory: Callable[[Session], AlertComposer] = AlertComposer,
        rescan_interval: float = config.RESCAN_INTERVAL_SECONDS,
        baseline_interval: float = config.BASELINE_INTERVAL_SECONDS,
    ) -> None:
        self.composer_factory = composer_factory
        self.tasks: List[PeriodicTask] = [
            PeriodicTask("FailedLoginRescan", rescan_interval, _with_session(session_factory, self.rescan_pass)),
            PeriodicTask("BaselineLearner", baseline_interval, _with_session(session_factory, self.baseline_pass)),
        ]

    def rescan_pass(self, db: Session) -> None:
        scan_failed_logins(db)

    def baseline_pass(self, db: Session) -> None:
        update_baselines(db)
        detect_file_deviations(db, self.composer_factory(db))

    def start(self) -> None:
        for task in self.tasks:
            task.start()

    def stop(self, timeout: Optional[float] = 10) -> None:
        for task in self.tasks:
            task.stop(timeout)
