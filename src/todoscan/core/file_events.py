"""
Filesystem change notifications as seen by the update controller.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class FileEventType(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class FileEvent:
    """
    One change reported by a watcher.

    ``is_directory`` is only reliable for deletions; watchers drop directory
    creations and modifications before they get here.
    """

    event_type: FileEventType
    file_path: Path
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if isinstance(self.file_path, str):
            self.file_path = Path(self.file_path)
