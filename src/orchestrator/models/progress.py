#!/usr/bin/env python3
"""
Progress snapshot model.

Advisory display state for a tracked run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .run import RunStatus


@dataclass
class ProgressSnapshot:
    run_id: str
    status: RunStatus = RunStatus.PENDING
    progress: float = 0.0
    current_step_label: Optional[str] = None
    channel: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.progress = max(0.0, min(100.0, float(self.progress)))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'status': self.status.value,
            'progress': self.progress,
            'current_step_label': self.current_step_label,
            'channel': self.channel,
            'updated_at': self.updated_at.isoformat(),
        }
