"""
Edit History - undo/redo for the text of one source note

Responsibilities:
- Linear undo history over text snapshots (EditHistory)
- Coalesce rapid keystrokes into one snapshot after a quiescence window
  (DebouncedRecorder)
- Bind one note id, one history and one recorder for the lifetime of a
  view/edit session (SourceEditor)

State machine (EditHistory):
    stack = [T0 .. Tn], cursor in [0, n]
    init(c)    -> stack = [c], cursor = 0
    record(c)  -> stack = stack[:cursor + 1] + [c], cursor = n'   (redo branch dropped)
    undo()     -> cursor -= 1 if cursor > 0
    redo()     -> cursor += 1 if cursor < n

Debounce is a timing policy, not a correctness requirement. The pending
recording is an asyncio.Task; cancelling it is the only way a recording is
abandoned, and closing the editor always cancels it so a stale snapshot
cannot land in a later session.
"""

import asyncio
import logging
from typing import List, Optional

from handoff import config

logger = logging.getLogger(__name__)


class EditHistory:
    """Linear undo/redo stack of text snapshots"""

    def __init__(self, content: str = ""):
        self._stack: List[str] = []
        self._cursor = 0
        self.init(content)

    def init(self, content: str) -> None:
        """Reset to a single snapshot"""
        self._stack = [content]
        self._cursor = 0

    def record(self, content: str) -> bool:
        """
        Record a new snapshot after the cursor.

        Anything after the cursor (the redo branch) is discarded. Recording
        content equal to the current snapshot is a no-op.

        Args:
            content: New text snapshot

        Returns:
            bool: True if a snapshot was added
        """
        if content == self._stack[self._cursor]:
            return False

        del self._stack[self._cursor + 1:]
        self._stack.append(content)
        self._cursor = len(self._stack) - 1
        return True

    def undo(self) -> str:
        """Step back one snapshot. At the oldest snapshot this is a no-op."""
        if self._cursor > 0:
            self._cursor -= 1
        return self._stack[self._cursor]

    def redo(self) -> str:
        """Step forward one snapshot. At the newest snapshot this is a no-op."""
        if self._cursor < len(self._stack) - 1:
            self._cursor += 1
        return self._stack[self._cursor]

    @property
    def current(self) -> str:
        return self._stack[self._cursor]

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._stack) - 1

    def snapshots(self) -> List[str]:
        return list(self._stack)

    def __len__(self) -> int:
        return len(self._stack)


class DebouncedRecorder:
    """
    Records into an EditHistory once edits have been quiet for `delay` seconds.

    Every schedule() cancels the previous pending task. Must be driven from
    a running event loop.
    """

    def __init__(self, history: EditHistory, delay: Optional[float] = None):
        self.history = history
        self.delay = config.HISTORY_DEBOUNCE_SECONDS if delay is None else delay
        self._task: Optional[asyncio.Task] = None

    def schedule(self, content: str) -> None:
        """
        (Re)start the quiescence window for content.

        Raises:
            RuntimeError: If called without a running event loop
        """
        self.cancel()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._record_later(content))

    async def _record_later(self, content: str) -> None:
        await asyncio.sleep(self.delay)
        self._task = None
        if self.history.record(content):
            logger.debug(f"Edit snapshot recorded (cursor={self.history.cursor})")

    def cancel(self) -> None:
        """Drop the pending recording, if any"""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()


class SourceEditor:
    """
    One view/edit session over a single note's content.

    The draft is what the user currently sees. The history holds committed
    snapshots. Closing the editor discards both and cancels any pending
    recording.
    """

    def __init__(self, note_id: str, content: str, debounce_seconds: Optional[float] = None):
        """
        Args:
            note_id: Note being edited
            content: Note content at the time the editor was opened
            debounce_seconds: Quiescence window (defaults to config)
        """
        self.note_id = note_id
        self.history = EditHistory(content)
        self.draft = content
        self.closed = False
        self._recorder = DebouncedRecorder(self.history, debounce_seconds)

        logger.info(f"Source editor opened for note {note_id}")

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"Source editor for note {self.note_id} is closed")

    def type(self, content: str) -> None:
        """
        Update the draft and restart the debounce window.

        Requires a running event loop.
        """
        self._check_open()
        self.draft = content
        self._recorder.schedule(content)

    def checkpoint(self, content: Optional[str] = None) -> bool:
        """
        Record a snapshot immediately, skipping the debounce window.

        Args:
            content: New draft (defaults to the current draft)

        Returns:
            bool: True if a snapshot was added
        """
        self._check_open()
        if content is not None:
            self.draft = content
        self._recorder.cancel()
        return self.history.record(self.draft)

    def undo(self) -> str:
        # Pending keystrokes are committed first so undo steps back over them
        self.checkpoint()
        self.draft = self.history.undo()
        return self.draft

    def redo(self) -> str:
        self.checkpoint()
        self.draft = self.history.redo()
        return self.draft

    @property
    def pending(self) -> bool:
        return self._recorder.pending

    def close(self) -> None:
        """Cancel any pending recording and mark the editor closed"""
        if self.closed:
            return
        self._recorder.cancel()
        self.closed = True
        logger.info(f"Source editor closed for note {self.note_id}")
