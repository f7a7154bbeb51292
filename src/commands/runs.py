#!/usr/bin/env python3
"""
Runs command endpoints.

Starts, lists, inspects, cancels, retries and watches analysis runs, and
prints the dashboard statistics computed over the fetched runs.
"""

import asyncio
import json
from argparse import Namespace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from orchestrator.exceptions import ValidationError
from orchestrator.models.definition import AnalysisDefinition
from orchestrator.models.run import (
    AlgorithmSelection, AnalysisMode, AnalysisRun, AnalysisRunConfig, AnalysisRunRequest,
    NotificationConfig, RunFilter, RunStatus, StepConfig
)

from .base import BaseCommand

STATUS_ICONS = {
    'pending': '⏳',
    'in_progress': '🔄',
    'completed': '✅',
    'failed': '❌',
    'cancelled': '🚫',
    'skipped': '⏭️',
}


def parse_value(raw: str) -> Any:
    """Interpret a CLI value as JSON when it parses, else as a plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _split_pair(raw: str, separator: str, option: str) -> List[str]:
    left, sep, right = raw.partition(separator)
    if not sep or not left or not right:
        raise ValidationError.single(option, f"expected LEFT{separator}RIGHT, got '{raw}'")
    return [left.strip(), right.strip()]


def build_request(definition: AnalysisDefinition,
                  mode: str = 'automatic',
                  steps: Optional[List[str]] = None,
                  params: Optional[List[str]] = None,
                  disabled: Optional[List[str]] = None,
                  continue_on_failure: bool = False,
                  channel: Optional[str] = None,
                  document_type: Optional[str] = None) -> AnalysisRunRequest:
    """
    Build a run request from command line selections.

    Without any --step selection every active step runs with its first
    active algorithm. With selections, only the selected steps are enabled.

    Args:
        definition: Definition the run is for
        mode: automatic or step_by_step
        steps: STEP=ALGORITHM[@VERSION] selections
        params: STEP.PARAM=VALUE assignments (VALUE parsed as JSON when possible)
        disabled: Step codes to disable
        continue_on_failure: Keep running later steps after a failure
        channel: Websocket channel for progress notifications
        document_type: Document type checked against the definition

    Returns:
        Request ready for RunStore.start_analysis
    """
    selections: Dict[str, AlgorithmSelection] = {}
    for raw in steps or []:
        step_code, algorithm = _split_pair(raw, '=', 'step')
        code, _, version = algorithm.partition('@')
        selections[step_code] = AlgorithmSelection(code=code, version=version or None)

    for raw in params or []:
        target, value = _split_pair(raw, '=', 'param')
        step_code, parameter = _split_pair(target, '.', 'param')
        if step_code not in selections:
            step = definition.get_step(step_code)
            active = [a for a in step.algorithms if a.is_active] if step else []
            if not active:
                raise ValidationError.single('param', f"no algorithm selected for step '{step_code}'", step_code)
            selections[step_code] = AlgorithmSelection(code=active[0].code, version=active[0].version)
        selections[step_code].parameters[parameter] = parse_value(value)

    explicit = bool(steps)
    step_configs: Dict[str, StepConfig] = {}
    for step in definition.steps:
        selection = selections.get(step.code)
        if selection is None and not explicit and step.is_active:
            active = [a for a in step.algorithms if a.is_active]
            if active:
                selection = AlgorithmSelection(code=active[0].code, version=active[0].version)
        if selection is None:
            continue
        step_configs[step.code] = StepConfig(enabled=step.code not in (disabled or []), algorithm=selection)

    # Unknown step codes are passed through so validation can name them
    for step_code, selection in selections.items():
        if step_code not in step_configs:
            step_configs[step_code] = StepConfig(enabled=True, algorithm=selection)

    return AnalysisRunRequest(
        analysis_code=definition.code,
        analysis_version=definition.version,
        mode=AnalysisMode(mode),
        document_type=document_type,
        config=AnalysisRunConfig(
            steps=step_configs,
            notifications=NotificationConfig(websocket_channel=channel),
            continue_on_failure=continue_on_failure,
        ),
    )


class RunsCommand(BaseCommand):
    """Handle analysis run lifecycle operations."""

    def execute(self, subcommand: str, args: Namespace) -> int:
        """Execute runs subcommand."""
        if subcommand == 'list':
            return self.list(args)
        elif subcommand == 'show':
            return self.show(args)
        elif subcommand == 'start':
            return self.start(args)
        elif subcommand == 'cancel':
            return self.cancel(args)
        elif subcommand == 'retry':
            return self.retry(args)
        elif subcommand == 'watch':
            return self.watch(args)
        elif subcommand == 'stats':
            return self.stats(args)
        else:
            self.logger.error(f"Unknown runs subcommand: {subcommand}")
            return 1

    def _print_run_line(self, run: AnalysisRun) -> None:
        icon = STATUS_ICONS.get(run.status.value, '•')
        print(f"{icon} {run.id:<12} {run.status.value:<12} {run.analysis_code:<20} "
              f"{run.document_id:<24} {self.format_time(run.created_at)}")

    def _print_run(self, run: AnalysisRun, show_results: bool = False) -> None:
        icon = STATUS_ICONS.get(run.status.value, '•')
        print(f"\n=== Run {run.id} ===")
        print(f"{icon} Status: {run.status.value}")
        print(f"📄 Document: {run.document_id}")
        print(f"🧪 Analysis: {run.analysis_code}@{run.analysis_version or 'latest'} ({run.mode.value})")
        print(f"🕐 Created: {self.format_time(run.created_at)}")
        print(f"▶️  Started: {self.format_time(run.started_at)}")
        print(f"🏁 Completed: {self.format_time(run.completed_at)}")
        if run.duration_minutes is not None:
            print(f"⏱️  Duration: {run.duration_minutes:.2f} min")
        if run.error_message:
            print(f"⚠️  Error: {run.error_message}")

        snapshot = self.tracker.get(run.id)
        if snapshot is not None:
            label = f" ({snapshot.current_step_label})" if snapshot.current_step_label else ""
            print(f"📊 Progress: {snapshot.progress:.0f}%{label}")

        if run.config.steps:
            print("\nSteps:")
            for step_code, step_config in run.config.steps.items():
                step_result = run.get_step_result(step_code)
                status = step_result.status.value if step_result else ('pending' if step_config.enabled else 'skipped')
                algorithm = step_config.algorithm.code if step_config.algorithm else '-'
                extra = ""
                if step_result is not None:
                    if step_result.retry_count:
                        extra += f" retries={step_result.retry_count}"
                    if step_result.user_corrections:
                        extra += " corrected"
                    if step_result.error_message:
                        extra += f" error={step_result.error_message}"
                print(f"  {STATUS_ICONS.get(status, '•')} {step_code:<20} {status:<12} {algorithm}{extra}")
                if show_results and step_result is not None and step_result.result is not None:
                    print(json.dumps(step_result.effective_result(), indent=2, ensure_ascii=False, default=str))

        if run.attempts:
            print("\nPrevious attempts:")
            for attempt in run.attempts:
                failed = ', '.join(attempt.failed_steps) or '-'
                print(f"  #{attempt.attempt} {attempt.status.value} at {self.format_time(attempt.ended_at)} "
                      f"(failed: {failed}) {attempt.error_message or ''}")

    def list(self, args: Namespace) -> int:
        """List runs matching the given filters."""
        try:
            start_date = None
            if getattr(args, 'hours', None):
                start_date = datetime.now(timezone.utc) - timedelta(hours=args.hours)

            run_filter = RunFilter(
                status=RunStatus(args.status) if getattr(args, 'status', None) else None,
                document_id=getattr(args, 'document', None),
                analysis_code=getattr(args, 'analysis', None),
                start_date=start_date,
                skip=getattr(args, 'skip', 0) or 0,
                limit=getattr(args, 'limit', 100) or 100,
            )
            runs = self.run_async(self.store.fetch_runs(run_filter, force_refresh=True))

            if getattr(args, 'json', False):
                self.print_json([run.to_dict() for run in runs])
                return 0

            print(f"\n=== Analysis Runs ({len(runs)}) ===")
            if not runs:
                print("No runs found")
            for run in runs:
                self._print_run_line(run)
            return 0

        except Exception as e:
            return self.handle_error(e, "runs list")

    def show(self, args: Namespace) -> int:
        """Show one run with its steps."""
        try:
            run = self.run_async(self.store.set_current_run(args.run_id))

            if getattr(args, 'json', False):
                self.print_json(run.to_dict())
                return 0

            self._print_run(run, show_results=getattr(args, 'results', False))
            return 0

        except Exception as e:
            return self.handle_error(e, "runs show")

    def start(self, args: Namespace) -> int:
        """Validate and submit a new run."""
        async def _start():
            definition = await self.registry.get_definition(args.analysis, getattr(args, 'version', None))
            request = build_request(
                definition,
                mode=args.mode,
                steps=args.step,
                params=args.param,
                disabled=args.disable,
                continue_on_failure=args.continue_on_failure,
                channel=getattr(args, 'channel', None),
                document_type=getattr(args, 'document_type', None),
            )
            run = await self.store.start_analysis(args.document, request)
            print(f"🚀 Started run {run.id} ({definition.key}) for document {run.document_id}")
            if args.watch:
                run = await self._watch(run.id, args.interval, args.timeout)
            return run

        try:
            run = self.run_async(_start())
            self._print_run(run)
            return 0 if run.status != RunStatus.FAILED else 3

        except Exception as e:
            return self.handle_error(e, "runs start")

    def cancel(self, args: Namespace) -> int:
        """Cancel a run."""
        try:
            run = self.run_async(self.store.cancel_analysis(args.run_id))
            print(f"{STATUS_ICONS.get(run.status.value, '•')} Run {run.id} is {run.status.value}")
            return 0

        except Exception as e:
            return self.handle_error(e, "runs cancel")

    def retry(self, args: Namespace) -> int:
        """Retry a failed run."""
        async def _retry():
            run = await self.store.retry_analysis(args.run_id)
            print(f"🔁 Retrying run {run.id} (attempt {len(run.attempts) + 1})")
            if args.watch:
                run = await self._watch(run.id, args.interval, args.timeout)
            return run

        try:
            run = self.run_async(_retry())
            self._print_run(run)
            return 0 if run.status != RunStatus.FAILED else 3

        except Exception as e:
            return self.handle_error(e, "runs retry")

    def watch(self, args: Namespace) -> int:
        """Poll a run until it reaches a terminal status."""
        try:
            run = self.run_async(self._watch(args.run_id, args.interval, args.timeout))
            self._print_run(run)
            return 0 if run.status != RunStatus.FAILED else 3

        except Exception as e:
            return self.handle_error(e, "runs watch")

    async def _watch(self, run_id: str, interval: float, timeout: Optional[float]) -> AnalysisRun:
        """
        Print progress changes until the run ends or the timeout passes.

        With a push URL configured, pushed notifications keep the progress
        current and the run is only re-fetched once the push stream ends or
        reports the run finished.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        last_line = None

        run = await self.store.fetch_run(run_id)
        if not self.tracker.is_tracking(run_id) and not run.status.is_terminal:
            self.tracker.track(run)
        listener_task = self._start_push_listener() if not run.status.is_terminal else None

        try:
            while True:
                snapshot = self.tracker.get(run_id)
                if snapshot is not None:
                    line = f"📊 {snapshot.progress:5.1f}% {snapshot.status.value:<12} {snapshot.current_step_label or ''}"
                else:
                    line = f"📊 {run.status.value}"
                if line != last_line:
                    print(line)
                    last_line = line

                if run.status.is_terminal:
                    return run
                if deadline is not None and loop.time() >= deadline:
                    print(f"⏰ Stopped watching {run_id} after {timeout}s (still {run.status.value})")
                    return run

                await asyncio.sleep(interval)
                pushing = listener_task is not None and not listener_task.done()
                if pushing and self.tracker.is_tracking(run_id):
                    continue
                run = await self.store.fetch_run(run_id)
        finally:
            await self._stop_push_listener(listener_task)

    def _start_push_listener(self) -> Optional['asyncio.Task[None]']:
        if not self.config.has_push():
            return None
        listener = self._container.get('push_listener')
        self.logger.debug(f"Listening for pushed progress on {listener.push_url}")
        return asyncio.ensure_future(listener.listen())

    async def _stop_push_listener(self, task: Optional['asyncio.Task[None]']) -> None:
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"Push listener stopped, progress was polled instead: {e}")

    def stats(self, args: Namespace) -> int:
        """Show dashboard statistics over recent runs."""
        try:
            start_date = None
            if getattr(args, 'days', None):
                start_date = datetime.now(timezone.utc) - timedelta(days=args.days)
            run_filter = RunFilter(start_date=start_date, limit=getattr(args, 'limit', 500) or 500)
            self.run_async(self.store.fetch_runs(run_filter, force_refresh=True))
            stats = self.store.dashboard_stats()

            if getattr(args, 'json', False):
                self.print_json(stats.to_dict())
                return 0

            print("\n=== Analysis Run Statistics ===")
            print(f"Total runs: {stats.total}")
            print(f"✅ Completed: {stats.completed}")
            print(f"❌ Failed: {stats.failed}")
            print(f"🚫 Cancelled: {stats.cancelled}")
            print(f"🔄 Ongoing: {stats.ongoing}")
            print(f"Success rate: {stats.success_rate:.1f}%")
            if stats.average_duration_minutes is not None:
                print(f"Average duration: {stats.average_duration_minutes:.2f} min")
            if stats.most_used_analysis_type:
                print(f"Most used analysis: {stats.most_used_analysis_type}")

            latest = self.store.latest_run_per_document()
            if latest:
                print("\nLatest run per document:")
                for document_id, run in sorted(latest.items()):
                    icon = STATUS_ICONS.get(run.status.value, '•')
                    print(f"  {icon} {document_id:<24} {run.id} {run.analysis_code}")
            return 0

        except Exception as e:
            return self.handle_error(e, "runs stats")
