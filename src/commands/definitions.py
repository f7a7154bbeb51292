#!/usr/bin/env python3
"""
Definitions command endpoints.

Lists the analysis definitions known to the backend and shows the steps,
algorithms and parameter schemas of one definition.
"""

from argparse import Namespace

from .base import BaseCommand


class DefinitionsCommand(BaseCommand):
    """Handle analysis definition lookups."""

    def execute(self, subcommand: str, args: Namespace) -> int:
        """Execute definitions subcommand."""
        if subcommand == 'list':
            return self.list(args)
        elif subcommand == 'show':
            return self.show(args)
        else:
            self.logger.error(f"Unknown definitions subcommand: {subcommand}")
            return 1

    def list(self, args: Namespace) -> int:
        """List analysis definitions."""
        try:
            definitions = self.run_async(self.registry.list_definitions(force_refresh=True))

            if getattr(args, 'json', False):
                self.print_json([d.to_dict() for d in definitions])
                return 0

            print(f"\n=== Analysis Definitions ({len(definitions)}) ===")
            for definition in definitions:
                marker = "✅" if definition.is_active else "⏸️"
                print(f"{marker} {definition.key:<32} {definition.name}")
                print(f"   Steps: {' → '.join(definition.step_codes)}")
                if definition.supported_document_types:
                    print(f"   Documents: {', '.join(definition.supported_document_types)}")
            return 0

        except Exception as e:
            return self.handle_error(e, "definitions list")

    def show(self, args: Namespace) -> int:
        """Show one definition in full."""
        try:
            definition = self.run_async(self.registry.get_definition(args.code, args.version))

            if getattr(args, 'json', False):
                self.print_json(definition.to_dict())
                return 0

            print(f"\n=== {definition.name} ({definition.key}) ===")
            if definition.description:
                print(definition.description)
            for step in definition.steps:
                marker = "✅" if step.is_active else "⏸️"
                print(f"\n{marker} [{step.order}] {step.code}: {step.name}")
                for algorithm in step.algorithms:
                    state = "" if algorithm.is_active else " (inactive)"
                    print(f"   🔧 {algorithm.code}@{algorithm.version}{state}: {algorithm.name}")
                    for parameter in algorithm.parameters:
                        required = "required" if parameter.required else f"default={parameter.default!r}"
                        constraints = f" {parameter.constraints}" if parameter.constraints else ""
                        print(f"      - {parameter.name} ({parameter.type}, {required}){constraints}")
            return 0

        except Exception as e:
            return self.handle_error(e, "definitions show")
