#!/usr/bin/env python3
"""
Smart CLI Router for the Analysis Run Orchestrator.

Modular command architecture over definitions, runs and steps.
"""

import argparse
import logging
import sys
from typing import Optional, List

from commands import get_command, COMMANDS
from orchestrator.config import get_config_manager
from orchestrator.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class CLIRouter:
    """
    CLI router for analysis run commands.

    Command structure:
    - python run.py definitions list
    - python run.py runs start --analysis table_analysis --document doc-1 --watch
    - python run.py steps execute run-0001 table_detection --algorithm grid_detector
    - python run.py runs stats
    """

    def __init__(self, container=None):
        """
        Initialize CLI router.

        Args:
            container: Service container handed to commands (the global one if omitted)
        """
        self._container = container
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the main argument parser."""
        parser = argparse.ArgumentParser(
            description="Document Analysis Run Orchestrator",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self._get_examples_text()
        )

        subparsers = parser.add_subparsers(
            dest='command',
            help='Available commands',
            metavar='{command}'
        )

        self._add_definitions_parser(subparsers)
        self._add_runs_parser(subparsers)
        self._add_steps_parser(subparsers)

        return parser

    def _add_definitions_parser(self, subparsers):
        """Add definitions command parser."""
        definitions_parser = subparsers.add_parser(
            'definitions',
            help='Analysis definition lookups'
        )

        definitions_subparsers = definitions_parser.add_subparsers(
            dest='subcommand',
            help='Definition operations',
            metavar='{list,show}'
        )

        list_parser = definitions_subparsers.add_parser('list', help='List analysis definitions')
        list_parser.add_argument('--json', action='store_true', help='Print JSON instead of a table')

        show_parser = definitions_subparsers.add_parser('show', help='Show steps, algorithms and parameters')
        show_parser.add_argument('code', help='Analysis definition code')
        show_parser.add_argument('--version', default=None, help='Definition version (default: latest)')
        show_parser.add_argument('--json', action='store_true', help='Print JSON instead of text')

    def _add_runs_parser(self, subparsers):
        """Add runs command parser."""
        runs_parser = subparsers.add_parser(
            'runs',
            help='Analysis run lifecycle operations'
        )

        runs_subparsers = runs_parser.add_subparsers(
            dest='subcommand',
            help='Run operations',
            metavar='{list,show,start,cancel,retry,watch,stats}'
        )

        # List subcommand
        list_parser = runs_subparsers.add_parser('list', help='List runs')
        list_parser.add_argument('--status', choices=['pending', 'in_progress', 'completed', 'failed', 'cancelled'],
                                 help='Only runs with this status')
        list_parser.add_argument('--document', help='Only runs of this document')
        list_parser.add_argument('--analysis', help='Only runs of this analysis code')
        list_parser.add_argument('--hours', type=int, default=None, help='Only runs created in the last N hours')
        list_parser.add_argument('--skip', type=int, default=0, help='Runs to skip (default: 0)')
        list_parser.add_argument('--limit', type=int, default=100, help='Maximum runs to list (default: 100)')
        list_parser.add_argument('--json', action='store_true', help='Print JSON instead of a table')

        # Show subcommand
        show_parser = runs_subparsers.add_parser('show', help='Show one run with its steps')
        show_parser.add_argument('run_id', help='Run id')
        show_parser.add_argument('--results', action='store_true', help='Print corrected step results')
        show_parser.add_argument('--json', action='store_true', help='Print JSON instead of text')

        # Start subcommand
        start_parser = runs_subparsers.add_parser('start', help='Validate and submit a new run')
        start_parser.add_argument('--analysis', required=True, help='Analysis definition code')
        start_parser.add_argument('--version', default=None, help='Definition version (default: latest)')
        start_parser.add_argument('--document', required=True, help='Document id to analyse')
        start_parser.add_argument('--document-type', dest='document_type', default=None,
                                  help='Document type checked against the definition')
        start_parser.add_argument('--mode', choices=['automatic', 'step_by_step'], default='automatic',
                                  help='Run mode (default: automatic)')
        start_parser.add_argument('--step', action='append', default=[], metavar='STEP=ALGORITHM[@VERSION]',
                                  help='Enable a step with an algorithm (repeatable; default: every active step)')
        start_parser.add_argument('--param', action='append', default=[], metavar='STEP.NAME=VALUE',
                                  help='Algorithm parameter, VALUE parsed as JSON when possible (repeatable)')
        start_parser.add_argument('--disable', action='append', default=[], metavar='STEP',
                                  help='Disable a step (repeatable)')
        start_parser.add_argument('--continue-on-failure', dest='continue_on_failure', action='store_true',
                                  help='Keep running later steps after a step fails')
        start_parser.add_argument('--channel', default=None, help='Websocket channel for progress notifications')
        self._add_watch_arguments(start_parser, optional=True)

        # Cancel subcommand
        cancel_parser = runs_subparsers.add_parser('cancel', help='Cancel a run')
        cancel_parser.add_argument('run_id', help='Run id')

        # Retry subcommand
        retry_parser = runs_subparsers.add_parser('retry', help='Retry a failed run')
        retry_parser.add_argument('run_id', help='Run id')
        self._add_watch_arguments(retry_parser, optional=True)

        # Watch subcommand
        watch_parser = runs_subparsers.add_parser('watch', help='Follow a run until it ends')
        watch_parser.add_argument('run_id', help='Run id')
        self._add_watch_arguments(watch_parser, optional=False)

        # Stats subcommand
        stats_parser = runs_subparsers.add_parser('stats', help='Show dashboard statistics')
        stats_parser.add_argument('--days', type=int, default=None, help='Only runs created in the last N days')
        stats_parser.add_argument('--limit', type=int, default=500, help='Maximum runs to include (default: 500)')
        stats_parser.add_argument('--json', action='store_true', help='Print JSON instead of text')

    @staticmethod
    def _add_watch_arguments(parser, optional: bool):
        if optional:
            parser.add_argument('--watch', action='store_true', help='Follow the run until it ends')
        parser.add_argument('--interval', type=float, default=1.0, help='Seconds between polls (default: 1)')
        parser.add_argument('--timeout', type=float, default=None, help='Stop watching after N seconds')

    def _add_steps_parser(self, subparsers):
        """Add steps command parser."""
        steps_parser = subparsers.add_parser(
            'steps',
            help='Manual step execution and corrections'
        )

        steps_subparsers = steps_parser.add_subparsers(
            dest='subcommand',
            help='Step operations',
            metavar='{execute,correct,revert}'
        )

        # Execute subcommand
        execute_parser = steps_subparsers.add_parser('execute', help='(Re-)execute one step of a run')
        execute_parser.add_argument('run_id', help='Run id')
        execute_parser.add_argument('step', help='Step code')
        execute_parser.add_argument('--algorithm', required=True, help='Algorithm code')
        execute_parser.add_argument('--version', default=None, help='Algorithm version (default: latest)')
        execute_parser.add_argument('--param', action='append', default=[], metavar='NAME=VALUE',
                                    help='Algorithm parameter, VALUE parsed as JSON when possible (repeatable)')
        execute_parser.add_argument('--json', action='store_true', help='Print JSON instead of text')

        # Correct subcommand
        correct_parser = steps_subparsers.add_parser('correct', help='Merge corrections into a step result')
        correct_parser.add_argument('run_id', help='Run id')
        correct_parser.add_argument('step', help='Step code')
        correct_parser.add_argument('corrections', help='JSON object, or @file.json')

        # Revert subcommand
        revert_parser = steps_subparsers.add_parser('revert', help='Drop corrections from a step result')
        revert_parser.add_argument('run_id', help='Run id')
        revert_parser.add_argument('step', help='Step code')
        revert_parser.add_argument('--key', action='append', default=[],
                                   help='Correction key to drop (repeatable; default: all)')

    def _get_examples_text(self) -> str:
        """Get examples text for help."""
        return """
Examples:
  # Explore what can run
  python run.py definitions list
  python run.py definitions show table_analysis

  # Start a run and follow it
  python run.py runs start --analysis table_analysis --document invoice-7.pdf --watch
  python run.py runs start --analysis table_analysis --document invoice-7.pdf \\
      --step table_detection=grid_detector --param table_detection.confidence_threshold=0.8 --mode step_by_step

  # Manual steps and corrections
  python run.py steps execute run-0001 table_detection --algorithm layout_detector --param model=accurate
  python run.py steps correct run-0001 table_detection '{"tables": [{"rows": 4}]}'
  python run.py steps revert run-0001 table_detection

  # Housekeeping
  python run.py runs list --status failed
  python run.py runs retry run-0001 --watch
  python run.py runs stats --days 7

  # Local demo without a server
  ANALYSIS_BACKEND=memory ANALYSIS_MEMORY_STATE=.runs.json python run.py runs start ...

"""

    def route_command(self, args: Optional[List[str]] = None) -> int:
        """
        Route command to appropriate handler.

        Args:
            args: Command line arguments (uses sys.argv if None)

        Returns:
            Exit code
        """
        try:
            if args is None:
                args = sys.argv[1:]

            parsed_args = self.parser.parse_args(args)

            if not parsed_args.command:
                self.parser.print_help()
                return 1

            return self._handle_command(parsed_args)

        except SystemExit as e:
            # argparse calls sys.exit() on error or help
            return e.code if e.code is not None else 0
        except Exception as e:
            logger.error(f"CLI routing error: {e}", exc_info=True)
            return 1

    def _handle_command(self, args: argparse.Namespace) -> int:
        """Handle command structure."""
        logger.debug(f"Handling command: {args.command}")

        if args.command not in COMMANDS:
            available = ', '.join(COMMANDS.keys())
            logger.error(f"Unknown command '{args.command}'. Available: {available}")
            return 1

        subcommand = getattr(args, 'subcommand', None)
        if not subcommand:
            logger.error(f"No subcommand specified for '{args.command}'")
            try:
                self.parser.parse_args([args.command, '--help'])  # Show help
            except SystemExit:
                pass
            return 1

        try:
            command = get_command(args.command, self._container)
            return command.execute(subcommand, args)
        except Exception as e:
            logger.error(f"Error executing {args.command} {subcommand}: {e}", exc_info=True)
            return 1


def main(args: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        get_config_manager().update_logging()
    except ConfigurationError as e:
        # Commands report the same problem when they first need the backend
        logger.warning(f"Configuration incomplete: {e}")

    router = CLIRouter()
    return router.route_command(args)


if __name__ == '__main__':
    exit_code = main()
    sys.exit(exit_code)
