"""
Processors

Execution slots that tasks run on: local scheduler threads and
threads of remote workers.
"""

from dataclasses import dataclass
from enum import Enum


class ProcessorKind(Enum):
    """Where a processor lives"""
    THREAD = "thread"
    REMOTE = "remote"


@dataclass(frozen=True)
class Processor:
    """
    One execution slot.

    Examples:
        - Local thread: Processor(worker="local", index=0)
        - Remote worker thread: Processor(worker="gpu-1", index=3, kind=ProcessorKind.REMOTE)
    """
    worker: str
    index: int
    kind: ProcessorKind = ProcessorKind.THREAD

    @property
    def is_remote(self) -> bool:
        return self.kind is ProcessorKind.REMOTE

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.worker}/{self.index}"
