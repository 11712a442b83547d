from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

STEP_IDLE = "idle"
STEP_VALIDATING = "validating"
STEP_UPLOADING = "uploading"
STEP_PARSING = "parsing"
STEP_PROCESSING = "processing"
STEP_SYNCING = "syncing"
STEP_RECONCILING = "reconciling"
STEP_COMPLETE = "complete"
STEP_PARTIAL = "partial"
STEP_ERROR = "error"

TERMINAL_STEPS = frozenset({STEP_COMPLETE, STEP_PARTIAL, STEP_ERROR})

STEP_PROGRESS: Dict[str, int] = {
    STEP_IDLE: 0,
    STEP_VALIDATING: 10,
    STEP_UPLOADING: 25,
    STEP_PARSING: 40,
    STEP_PROCESSING: 60,
    STEP_SYNCING: 80,
    STEP_RECONCILING: 90,
    STEP_COMPLETE: 100,
    STEP_PARTIAL: 100,
    STEP_ERROR: 100,
}

STEP_MESSAGES: Dict[str, str] = {
    STEP_IDLE: "Ready to upload",
    STEP_VALIDATING: "Validating file...",
    STEP_UPLOADING: "Uploading file...",
    STEP_PARSING: "Parsing Excel data...",
    STEP_PROCESSING: "Processing holdings...",
    STEP_SYNCING: "Syncing to database...",
    STEP_RECONCILING: "Reconciling with analytics...",
    STEP_COMPLETE: "Import completed successfully!",
    STEP_PARTIAL: "Import completed with warnings",
    STEP_ERROR: "Import failed",
}


@dataclass(frozen=True)
class UploadProgress:
    step: str
    message: str
    progress: int
    error: Optional[str] = None
    warnings: tuple[str, ...] = ()
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "message": self.message,
            "progress": self.progress,
            "error": self.error,
            "warnings": list(self.warnings),
            "details": self.details,
        }


ProgressListener = Callable[[UploadProgress], None]


@dataclass
class UploadProgressTracker:
    """Ordered progress through the upload pipeline.

    Steps only move forward; once a terminal step is reached the tracker must
    be ``reset()`` before another run.
    """

    listener: Optional[ProgressListener] = None
    current: UploadProgress = field(
        default_factory=lambda: UploadProgress(
            step=STEP_IDLE, message=STEP_MESSAGES[STEP_IDLE], progress=0
        )
    )
    history: List[UploadProgress] = field(default_factory=list)

    def _emit(self, progress: UploadProgress) -> UploadProgress:
        self.current = progress
        self.history.append(progress)
        if self.listener is not None:
            self.listener(progress)
        return progress

    def reset(self) -> UploadProgress:
        self.history = []
        return self._emit(
            UploadProgress(step=STEP_IDLE, message=STEP_MESSAGES[STEP_IDLE], progress=0)
        )

    def update(
        self,
        step: str,
        *,
        message: Optional[str] = None,
        warnings: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> UploadProgress:
        if step not in STEP_PROGRESS:
            raise ValueError(f"Unknown upload step: {step}")
        if self.current.step in TERMINAL_STEPS:
            raise ValueError("Upload already finished; reset before starting again")
        if STEP_PROGRESS[step] < self.current.progress:
            raise ValueError(f"Upload step cannot move back to {step}")
        return self._emit(
            UploadProgress(
                step=step,
                message=message or STEP_MESSAGES[step],
                progress=STEP_PROGRESS[step],
                warnings=tuple(warnings) if warnings is not None else self.current.warnings,
                details=details if details is not None else self.current.details,
            )
        )

    def add_warning(self, warning: str) -> UploadProgress:
        return self._emit(replace(self.current, warnings=self.current.warnings + (warning,)))

    def fail(self, error_message: str) -> UploadProgress:
        return self._emit(
            replace(
                self.current,
                step=STEP_ERROR,
                message=error_message,
                progress=STEP_PROGRESS[STEP_ERROR],
                error=error_message,
            )
        )

    @property
    def is_active(self) -> bool:
        return self.current.step not in TERMINAL_STEPS and self.current.step != STEP_IDLE

    @property
    def is_complete(self) -> bool:
        return self.current.step in {STEP_COMPLETE, STEP_PARTIAL}

    @property
    def has_error(self) -> bool:
        return self.current.step == STEP_ERROR

    @property
    def has_warnings(self) -> bool:
        return bool(self.current.warnings)


__all__ = [
    "STEP_IDLE",
    "STEP_VALIDATING",
    "STEP_UPLOADING",
    "STEP_PARSING",
    "STEP_PROCESSING",
    "STEP_SYNCING",
    "STEP_RECONCILING",
    "STEP_COMPLETE",
    "STEP_PARTIAL",
    "STEP_ERROR",
    "STEP_PROGRESS",
    "STEP_MESSAGES",
    "UploadProgress",
    "UploadProgressTracker",
]
