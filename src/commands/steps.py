#!/usr/bin/env python3
"""
Steps command endpoints.

Manually (re-)executes a step of a run and edits the user corrections
overlaid on its result.
"""

import json
from argparse import Namespace
from typing import Any, Dict, List, Optional

from orchestrator.corrections import diff_corrections
from orchestrator.exceptions import ValidationError
from orchestrator.models.run import StepResult

from .base import BaseCommand
from .runs import STATUS_ICONS, parse_value


def parse_parameters(assignments: Optional[List[str]]) -> Dict[str, Any]:
    """Turn NAME=VALUE assignments into a parameter mapping."""
    parameters: Dict[str, Any] = {}
    for raw in assignments or []:
        name, sep, value = raw.partition('=')
        if not sep or not name.strip():
            raise ValidationError.single('param', f"expected NAME=VALUE, got '{raw}'")
        parameters[name.strip()] = parse_value(value.strip())
    return parameters


def load_corrections(raw: str) -> Dict[str, Any]:
    """Parse a JSON object given inline or as @path/to/file.json."""
    if raw.startswith('@'):
        with open(raw[1:], 'r', encoding='utf-8') as f:
            raw = f.read()
    try:
        corrections = json.loads(raw)
    except ValueError as e:
        raise ValidationError.single('corrections', f"invalid JSON: {e}")
    if not isinstance(corrections, dict):
        raise ValidationError.single('corrections', 'must be a JSON object')
    return corrections


class StepsCommand(BaseCommand):
    """Handle manual step execution and result corrections."""

    def execute(self, subcommand: str, args: Namespace) -> int:
        """Execute steps subcommand."""
        if subcommand == 'execute':
            return self.execute_step(args)
        elif subcommand == 'correct':
            return self.correct(args)
        elif subcommand == 'revert':
            return self.revert(args)
        else:
            self.logger.error(f"Unknown steps subcommand: {subcommand}")
            return 1

    def _print_step(self, step_result: StepResult) -> None:
        icon = STATUS_ICONS.get(step_result.status.value, '•')
        print(f"{icon} {step_result.step_code}: {step_result.status.value} "
              f"({step_result.algorithm_code}@{step_result.algorithm_version}, retries={step_result.retry_count})")
        print(f"🕐 Updated: {self.format_time(step_result.updated_at)}")
        if step_result.error_message:
            print(f"⚠️  Error: {step_result.error_message}")
        for path, original, corrected in diff_corrections(step_result.result, step_result.user_corrections):
            print(f"✏️  {path}: {original!r} → {corrected!r}")

    def execute_step(self, args: Namespace) -> int:
        """(Re-)execute one step with the chosen algorithm."""
        try:
            parameters = parse_parameters(args.param)
            step_result = self.run_async(self.store.execute_step(
                args.run_id, args.step, args.algorithm, parameters, args.version
            ))

            if getattr(args, 'json', False):
                self.print_json(step_result.to_dict())
                return 0

            self._print_step(step_result)
            if step_result.result is not None:
                print(json.dumps(step_result.effective_result(), indent=2, ensure_ascii=False, default=str))
            return 0

        except Exception as e:
            return self.handle_error(e, "steps execute")

    def correct(self, args: Namespace) -> int:
        """Merge corrections into a step's overlay."""
        try:
            corrections = load_corrections(args.corrections)
            step_result = self.run_async(
                self.store.update_step_corrections(args.run_id, args.step, corrections)
            )
            print(f"💾 Saved corrections on {args.run_id}/{args.step}")
            self._print_step(step_result)
            return 0

        except Exception as e:
            return self.handle_error(e, "steps correct")

    def revert(self, args: Namespace) -> int:
        """Drop correction keys (all of them when none are named)."""
        try:
            step_result = self.run_async(
                self.store.revert_step_corrections(args.run_id, args.step, args.key or None)
            )
            print(f"↩️  Reverted corrections on {args.run_id}/{args.step}")
            self._print_step(step_result)
            return 0

        except Exception as e:
            return self.handle_error(e, "steps revert")
