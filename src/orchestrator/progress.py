#!/usr/bin/env python3
"""
Progress tracking for analysis runs.

The tracker is advisory display state: a keyed map from run id to the
latest ProgressSnapshot, fed by the run store, by polling and by push
notifications. It never blocks run store operations.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .exceptions import NotFoundError
from .models.progress import ProgressSnapshot
from .models.run import AnalysisRun, RunStatus, StepStatus
from .state_machine import progress_percent, step_statuses

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, ProgressSnapshot], None]


def _status_from(value: Any, fallback: RunStatus) -> RunStatus:
    try:
        return RunStatus(value)
    except ValueError:
        return fallback


class ProgressTracker:
    """Keyed map of run id to live progress."""

    def __init__(self):
        self._entries: Dict[str, ProgressSnapshot] = {}
        self._step_names: Dict[str, Dict[str, str]] = {}
        self._channels: Dict[str, str] = {}
        self._callbacks: List[ProgressCallback] = []

    def add_callback(self, callback: ProgressCallback) -> None:
        """Register a callback invoked as callback(event, snapshot)."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: ProgressCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify(self, event: str, snapshot: ProgressSnapshot) -> None:
        for callback in self._callbacks:
            try:
                callback(event, snapshot)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Progress callback error: {e}")

    def track(self, run: AnalysisRun, step_names: Optional[Dict[str, str]] = None) -> ProgressSnapshot:
        """
        Start (or restart) tracking a run.

        Args:
            run: Run to track
            step_names: Step code to display name, used for labels

        Returns:
            The initial snapshot
        """
        self._step_names[run.id] = dict(step_names or {})
        channel = run.config.notifications.websocket_channel
        if channel:
            self._channels[channel] = run.id

        snapshot = self._build_snapshot(run)
        self._entries[run.id] = snapshot
        logger.debug(f"Tracking run {run.id} ({snapshot.progress:.0f}%)")
        self._notify('tracked', snapshot)

        if snapshot.is_terminal:
            self.clear(run.id)
        return snapshot

    def is_tracking(self, run_id: str) -> bool:
        return run_id in self._entries

    def update_from_run(self, run: AnalysisRun) -> Optional[ProgressSnapshot]:
        """
        Refresh a tracked run's entry from the run itself.

        Untracked runs are ignored. Reaching a terminal status removes the entry.
        """
        if run.id not in self._entries:
            return None

        snapshot = self._build_snapshot(run)
        self._entries[run.id] = snapshot
        self._notify('updated', snapshot)
        if snapshot.is_terminal:
            self.clear(run.id)
        return snapshot

    def handle_push(self, channel: str, payload: Dict[str, Any]) -> Optional[ProgressSnapshot]:
        """
        Apply a push notification.

        Args:
            channel: Channel the message arrived on
            payload: Message body with status, progress and an optional step label

        Returns:
            The updated snapshot, or None when the run is not tracked
        """
        run_id = self._channels.get(channel) or payload.get('run_id') or payload.get('analysis_id')
        if not run_id or run_id not in self._entries:
            logger.debug(f"Ignoring push on {channel}: no tracked run")
            return None
        return self.apply_report(run_id, payload)

    def apply_report(self, run_id: str, report: Dict[str, Any]) -> Optional[ProgressSnapshot]:
        """
        Apply a progress report (pushed or fetched) to a tracked run.

        Missing or unusable fields keep their current values. A step code
        given as the current step is shown by its display name.

        Returns:
            The updated snapshot, or None when the run is not tracked
        """
        current = self._entries.get(run_id)
        if current is None:
            return None

        progress = report.get('progress', current.progress)
        try:
            progress = float(progress)
        except (TypeError, ValueError):
            progress = current.progress

        label = report.get('current_step_label') or report.get('current_step') or current.current_step_label
        label = self._step_names.get(run_id, {}).get(label, label)

        snapshot = ProgressSnapshot(
            run_id=current.run_id,
            status=_status_from(report.get('status', current.status.value), current.status),
            progress=progress,
            current_step_label=label,
            channel=current.channel,
        )
        self._entries[run_id] = snapshot
        self._notify('updated', snapshot)
        if snapshot.is_terminal:
            self.clear(run_id)
        return snapshot

    def clear(self, run_id: str) -> bool:
        """Stop tracking a run. Returns True if it was tracked."""
        snapshot = self._entries.pop(run_id, None)
        self._step_names.pop(run_id, None)
        for channel in [c for c, tracked in self._channels.items() if tracked == run_id]:
            del self._channels[channel]
        if snapshot is None:
            return False
        logger.debug(f"Stopped tracking run {run_id}")
        self._notify('cleared', snapshot)
        return True

    def get(self, run_id: str) -> Optional[ProgressSnapshot]:
        return self._entries.get(run_id)

    def snapshot(self) -> Dict[str, ProgressSnapshot]:
        return dict(self._entries)

    def active_run_ids(self) -> List[str]:
        return [run_id for run_id, snap in self._entries.items() if not snap.is_terminal]

    def channels(self) -> Dict[str, str]:
        """Channel to run id for every tracked run with a push channel."""
        return dict(self._channels)

    def _build_snapshot(self, run: AnalysisRun) -> ProgressSnapshot:
        return ProgressSnapshot(
            run_id=run.id,
            status=run.status,
            progress=progress_percent(run),
            current_step_label=self._current_label(run),
            channel=run.config.notifications.websocket_channel,
            updated_at=datetime.now(timezone.utc),
        )

    def _current_label(self, run: AnalysisRun) -> Optional[str]:
        if run.status.is_terminal:
            return None
        names = self._step_names.get(run.id, {})
        statuses = step_statuses(run)
        for wanted in (StepStatus.IN_PROGRESS, StepStatus.PENDING):
            for step_code, status in statuses.items():
                if status == wanted:
                    return names.get(step_code, step_code)
        return None


class ProgressPoller:
    """
    Cooperative background poller.

    Re-fetches every tracked non-terminal run at an interval and stops on
    its own once nothing is left to watch. Errors are logged and counted,
    never raised into callers.

    The refresh coroutine is given a run id and is expected to feed the
    tracker, e.g. RunStore.fetch_progress or RunStore.fetch_run.
    """

    def __init__(self,
                 tracker: ProgressTracker,
                 refresh: Callable[[str], Awaitable[Any]],
                 interval: float = 2.0,
                 name: str = 'progress-poller'):
        self.name = name
        self.interval = interval
        self._tracker = tracker
        self._refresh = refresh
        self._task: Optional['asyncio.Task[None]'] = None
        self.polls = 0
        self.errors = 0
        self.last_error: Optional[str] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop unless it is already running. Needs a running event loop."""
        if self.is_running():
            return
        self._task = asyncio.ensure_future(self._run_loop())
        logger.debug(f"[{self.name}] Started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"[{self.name}] Stopped")

    async def wait_idle(self) -> None:
        """Wait until the loop ends because every tracked run is terminal."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def poll_once(self) -> int:
        """
        Fetch every active run once.

        Returns:
            Number of runs polled
        """
        run_ids = self._tracker.active_run_ids()
        for run_id in run_ids:
            self.polls += 1
            try:
                await self._refresh(run_id)
            except NotFoundError:
                logger.warning(f"[{self.name}] Run {run_id} no longer exists, dropping it")
                self._tracker.clear(run_id)
            except Exception as e:  # noqa: BLE001
                self.errors += 1
                self.last_error = str(e)
                logger.warning(f"[{self.name}] Poll of run {run_id} failed: {e}")
        return len(run_ids)

    async def _run_loop(self) -> None:
        logger.debug(f"[{self.name}] Loop started")
        while self._tracker.active_run_ids():
            await asyncio.sleep(self.interval)
            await self.poll_once()
        logger.debug(f"[{self.name}] Loop ended, no active runs")
