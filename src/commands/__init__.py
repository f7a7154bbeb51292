#!/usr/bin/env python3
"""
Command endpoints for the analysis run orchestrator.

This module provides a scalable command architecture where each major
functionality is handled by dedicated command classes.
"""

from typing import Dict, Type
from .base import BaseCommand
from .definitions import DefinitionsCommand
from .runs import RunsCommand
from .steps import StepsCommand

# Command registry for easy extension
COMMANDS: Dict[str, Type[BaseCommand]] = {
    'definitions': DefinitionsCommand,
    'runs': RunsCommand,
    'steps': StepsCommand,
}

def get_command(command_name: str, container=None) -> BaseCommand:
    """Get a command instance by name."""
    if command_name not in COMMANDS:
        available = ', '.join(COMMANDS.keys())
        raise ValueError(f"Unknown command '{command_name}'. Available: {available}")

    command_class = COMMANDS[command_name]
    return command_class(container)
