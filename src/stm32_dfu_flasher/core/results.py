"""
Result objects for core operations.

Every action in core.actions returns an OperationResult, whether it
succeeded, failed on the device, or was only simulated.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional

# Stage name after which a failure leaves flash partially written
PROGRAMMING_STAGE = "Programming"


@dataclass
class OperationResult:
    """
    Outcome of a plan, flash or erase operation.

    Attributes:
        ok: Whether the operation completed successfully
        operation: "plan_update", "flash_firmware" or "erase_flash"
        device: Chip preset or USB ID of the target
        region: Flash range description from FlashGeometry.describe()
        stage: Update stage reached ("Complete", or the stage that failed)
        bytes_len: Image size, or flash size for an erase
        sha256: Hex digest of the firmware image, empty for an erase
        error_type: Exception class name behind a failure
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Operation-specific data (blocks, pages, dfu_status, ...)
        logs: Log lines captured while the operation ran
    """
    ok: bool
    operation: str
    device: str = ""
    region: str = ""
    stage: str = ""
    bytes_len: int = 0
    sha256: str = ""
    error_type: str = ""
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    @property
    def interrupted_programming(self) -> bool:
        """True when a failure left some blocks written and others not."""
        return not self.ok and self.stage == PROGRAMMING_STAGE

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str, error_type: Optional[str] = None) -> None:
        """Record a blocking error and mark the result as failed."""
        self.errors.append(message)
        if error_type:
            self.error_type = error_type
        self.ok = False

    def to_summary(self) -> str:
        """Readable multi-line summary for --verbose output."""
        header = f"[{'OK' if self.ok else 'FAILED'}] {self.operation}"
        if self.stage:
            header += f" ({self.stage})"
        lines = [header]

        for label, value in (
            ("Device", self.device),
            ("Region", self.region),
            ("Bytes", f"{self.bytes_len:,}" if self.bytes_len else ""),
            ("SHA-256", self.sha256),
        ):
            if value:
                lines.append(f"  {label}: {value}")

        lines.extend(f"  warning: {warn}" for warn in self.warnings)
        lines.extend(f"  error: {err}" for err in self.errors)
        return "\n".join(lines)

    def to_dict(self, include_logs: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        if not include_logs:
            data.pop("logs")
        return data

    @classmethod
    def success(cls, operation: str, **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        error_type: str = "",
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result carrying one error message."""
        return cls(
            ok=False,
            operation=operation,
            error_type=error_type,
            errors=[error],
            **kwargs,
        )
