"""
Service Layer - Workspace scan orchestration and the incremental UpdateController.
"""

from todoscan.services.update_controller import (
    ControllerError,
    ControllerStats,
    UpdateController,
)
from todoscan.services.workspace_scanner import (
    ScanSummary,
    read_and_scan,
    scan_workspace,
)

__all__ = [
    "ScanSummary",
    "scan_workspace",
    "read_and_scan",
    "UpdateController",
    "ControllerStats",
    "ControllerError",
]
