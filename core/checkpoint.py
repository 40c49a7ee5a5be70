"""Durable workflow checkpoint.

The checkpoint is the only state that outlives the process.  Everything
else (error budgets, ladder position, streak memory) is rebuilt from zero
on restart, so losing it costs at most the walk that was in flight.

The file is written with the same corruption-safe sequence the rest of
the bot uses for JSON state: rotate numbered backups, write a temporary
file, validate it by re-reading, then atomically replace the target.
Reads fall back through the backups when the primary file is damaged.
"""

import json
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class Checkpoint(BaseModel):
    """Persisted workflow progress.

    Attributes:
        setup_complete: One-time onboarding (verification and the
            bonus claim) has finished.
        account_registered: A signup went through at least once.
        last_recurring_claim_at: UTC time of the last hourly claim.
        last_bonus_claim_at: UTC time of the last bonus claim.
        verification_attempts: Verification requests issued since the
            last success or the last new verification need.
        cycle_count: Completed ladder walks.
        cumulative_pnl: Running profit / loss in minor units.
        withdrawal_threshold_level: Monitored balance recorded when the
            threshold controller armed.
        paused_for_withdrawal: Risk-taking is suspended until a manual
            withdrawal is detected.
        last_completed_state: Name of the last state whose step
            completed.  Informational; the workflow always restarts
            from ``INIT``.
        updated_at: Time of the last write.
    """

    setup_complete: bool = False
    account_registered: bool = False
    last_recurring_claim_at: Optional[datetime] = None
    last_bonus_claim_at: Optional[datetime] = None
    verification_attempts: int = Field(default=0, ge=0)
    cycle_count: int = Field(default=0, ge=0)
    cumulative_pnl: Decimal = Decimal("0")
    withdrawal_threshold_level: Optional[Decimal] = None
    paused_for_withdrawal: bool = False
    last_completed_state: Optional[str] = None
    updated_at: Optional[datetime] = None


class CheckpointStore:
    """Reads and writes a :class:`Checkpoint` to a single JSON file.

    One workflow instance owns one store; nothing else writes the file.
    """

    def __init__(self, filepath: str, max_backups: int = 3):
        self.filepath = str(filepath)
        self.max_backups = max_backups

    def _candidate_paths(self):
        return [self.filepath] + [
            f"{self.filepath}.backup.{i}"
            for i in range(1, self.max_backups + 1)
        ]

    def exists(self) -> bool:
        return any(os.path.exists(p) for p in self._candidate_paths())

    def load(self) -> Checkpoint:
        """Load the checkpoint, falling back to backups.

        A missing file is not an error: it means a fresh run and every
        field takes its default.  A file that cannot be parsed or
        validated is skipped in favour of the next backup.

        Returns:
            The stored checkpoint, or a default one.
        """
        for path in self._candidate_paths():
            if not os.path.exists(path):
                continue
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = json.load(fh)
                checkpoint = Checkpoint.model_validate(data)
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(
                    "Checkpoint file %s unreadable (%s), trying next backup",
                    path, e,
                )
                continue
            if path != self.filepath:
                logger.warning(
                    "Recovered checkpoint from backup %s", path
                )
            return checkpoint

        logger.info(
            "No checkpoint at %s, starting with defaults", self.filepath
        )
        return Checkpoint()

    def save(self, checkpoint: Checkpoint) -> bool:
        """Atomically write *checkpoint*, rotating backups.

        Args:
            checkpoint: State to persist.  ``updated_at`` is refreshed.

        Returns:
            ``True`` when the write was committed.
        """
        checkpoint.updated_at = datetime.now(timezone.utc)
        data: Dict[str, Any] = checkpoint.model_dump(mode="json")
        try:
            dirpath = os.path.dirname(self.filepath)
            if dirpath:
                os.makedirs(dirpath, exist_ok=True)

            if os.path.exists(self.filepath):
                backup_base = self.filepath + ".backup"
                for i in range(self.max_backups - 1, 0, -1):
                    old = f"{backup_base}.{i}"
                    new = f"{backup_base}.{i + 1}"
                    if os.path.exists(old):
                        os.replace(old, new)
                os.replace(self.filepath, f"{backup_base}.1")

            temp_file = self.filepath + ".tmp"
            with open(temp_file, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)

            # Validate by re-reading before committing
            with open(temp_file, "r", encoding="utf-8") as fh:
                Checkpoint.model_validate(json.load(fh))

            os.replace(temp_file, self.filepath)
            return True
        except (OSError, ValueError, ValidationError) as e:
            logger.error(
                "Could not write checkpoint to %s: %s",
                self.filepath, e,
            )
            return False
