"""Pydantic v2 models describing import, sync and purge outcomes."""

from enum import Enum

from pydantic import BaseModel


class ImportOutcome(str, Enum):
    IMPORTED = "imported"
    ALREADY_IMPORTED = "already_imported"
    FAILED = "failed"


class ImportResult(BaseModel):
    """Per-product outcome of an import attempt (never persisted)."""

    success: bool
    message: str
    outcome: ImportOutcome
    external_id: int | str | None = None
    product_name: str | None = None
    part_id: int | None = None
    error: str | None = None
    # not_found | upstream | schema | persistence | unexpected
    error_kind: str | None = None


class ImportStats(BaseModel):
    """Aggregate counters for a batch run plus the ordered per-item results.

    Also used as the live-progress snapshot while a full-catalog run is going.
    ``skipped`` counts products that were already imported.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[ImportResult] = []
    lost_pages: list[int] = []
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.results)

    def record(self, result: ImportResult) -> None:
        """Append *result* and bump the matching counter."""
        self.results.append(result)
        if result.outcome is ImportOutcome.IMPORTED:
            self.succeeded += 1
        elif result.outcome is ImportOutcome.ALREADY_IMPORTED:
            self.skipped += 1
        else:
            self.failed += 1


class SyncResult(BaseModel):
    success: bool
    message: str
    part_id: int
    external_id: int | str
    photo_count: int = 0


class PurgeError(BaseModel):
    part_id: int
    error: str


class PurgeReport(BaseModel):
    """Outcome of deleting imported parts: nothing is silently swallowed."""

    deleted: int = 0
    skipped: int = 0
    errors: list[PurgeError] = []
