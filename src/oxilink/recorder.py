"""
Recording of the latest reading to a text file at a fixed rate.

One line per reading, ``SpO2;HeartRate``, no header. The first line is written
when recording starts; each following line is appended with a leading newline
once per period.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, TextIO, Union

from .core import RECORD_PERIOD
from .errors import RecordingError, RecordingErrorKind
from .models import ReadingBoard, Severity, UserInterface

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
DestinationPicker = Callable[[], Awaitable[Optional[PathLike]]]
Sleeper = Callable[[float], Awaitable[None]]

# Written while no reading has been received yet
EMPTY_RECORD = "0;0"


def _append(handle: TextIO, text: str) -> None:
    handle.write(text)
    handle.flush()


def _create(path: Path, first_record: str) -> TextIO:
    """Open ``path`` for a new session and write its first line."""
    handle = open(path, "w", encoding="utf-8")
    try:
        _append(handle, first_record)
    except OSError:
        handle.close()
        raise
    return handle


@dataclass
class _RecordingSession:
    path: Path
    handle: TextIO
    period: float
    started_at: datetime = field(default_factory=datetime.now)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


class Recorder:
    """Writes the latest reading to disk once per period.

    A single actor task owns the open file for the whole session. ``stop``
    signals it through an event, so no tick is written after ``stop`` returns.
    """

    def __init__(
        self,
        board: ReadingBoard,
        ui: UserInterface,
        on_failure: Optional[Callable[[], Awaitable[None]]] = None,
        period: float = RECORD_PERIOD,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize recorder.

        Args:
            board: Source of the latest reading
            ui: Feedback surface for failures during a session
            on_failure: Coroutine run after a mid-session write failure
            period: Seconds between appended lines
            sleep: Waits one period (replaceable for tests)
        """
        self._board = board
        self._ui = ui
        self._on_failure = on_failure
        self.period = period
        self._sleep = sleep
        self._permit = asyncio.Semaphore(1)
        self._session: Optional[_RecordingSession] = None
        self.lines_written = 0
        self.failure: Optional[RecordingError] = None

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    @property
    def path(self) -> Optional[Path]:
        return self._session.path if self._session else None

    def _current_record(self) -> str:
        reading = self._board.latest
        return reading.as_record() if reading else EMPTY_RECORD

    async def start(self, pick_destination: DestinationPicker) -> Optional[Path]:
        """Start recording to a file chosen by ``pick_destination``.

        Returns:
            Path being recorded to, or None if no destination was picked

        Raises:
            RecordingError: ALREADY_RECORDING, or WRITE_FAILED if the file
                can't be created
        """
        if self._permit.locked():
            raise RecordingError(
                RecordingErrorKind.ALREADY_RECORDING, "A recording is already active"
            )
        await self._permit.acquire()

        try:
            destination = await pick_destination()
            if destination is None:
                logger.info("Recording cancelled, no destination selected")
                self._permit.release()
                return None

            path = Path(destination)
            handle = await asyncio.to_thread(_create, path, self._current_record())
        except OSError as e:
            self._permit.release()
            self.failure = RecordingError(
                RecordingErrorKind.WRITE_FAILED,
                f"{e} Recording session was interrupted. Please restart.",
            )
            if self._on_failure is not None:
                await self._on_failure()
            raise self.failure from e
        except BaseException:
            self._permit.release()
            raise

        self.failure = None
        self.lines_written = 1
        session = _RecordingSession(path=path, handle=handle, period=self.period)
        session.task = asyncio.create_task(self._run(session))
        self._session = session
        logger.info(f"Recording to {path}")
        return path

    async def stop(self) -> None:
        """Stop recording. No-op if not recording."""
        session = self._session
        if session is None:
            return
        session.stop_event.set()
        if session.task is not None:
            await session.task
        logger.info(f"Recording stopped ({self.lines_written} lines)")

    async def _run(self, session: _RecordingSession) -> None:
        """Actor loop: wait a period or the stop signal, then append."""
        failed = False
        try:
            while True:
                if await self._wait_tick(session):
                    break
                try:
                    await asyncio.to_thread(
                        _append, session.handle, "\n" + self._current_record()
                    )
                except OSError as e:
                    self.failure = RecordingError(
                        RecordingErrorKind.WRITE_FAILED,
                        f"{e} Recording session was interrupted. Please restart.",
                    )
                    failed = True
                    break
                self.lines_written += 1
        finally:
            try:
                session.handle.close()
            except OSError as e:
                logger.warning(f"Failed to close {session.path}: {e}")
            self._session = None
            self._permit.release()

        if failed and self.failure is not None:
            logger.error(f"Recording failed: {self.failure}")
            self._ui.notify_user(str(self.failure), Severity.ERROR)
            if self._on_failure is not None:
                await self._on_failure()

    async def _wait_tick(self, session: _RecordingSession) -> bool:
        """Wait for the next tick. Returns True if stop was requested."""
        tick = asyncio.ensure_future(self._sleep(session.period))
        stopped = asyncio.ensure_future(session.stop_event.wait())
        try:
            await asyncio.wait({tick, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            tick.cancel()
            stopped.cancel()
        return session.stop_event.is_set()
