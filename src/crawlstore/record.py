from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

ANNOTATION_UNWRITTEN = "unwritten"

class ProcessResult(Enum):
    PROCEED = "proceed"
    # the total bytes bound was reached; the crawl should wind down
    FINISHED = "finished"

@dataclass
class CrawlRecord:
    """A fully fetched URL as handed over by the crawl pipeline.

    Only `annotations` and `non_fatal_failures` are written to by the
    processor; everything else is read-only input.
    """
    url: str
    fetch_status: int
    ip: str = ""
    path_from_seed: Optional[str] = None
    via: Optional[str] = None
    source_tag: Optional[str] = None
    content_type: Optional[str] = None
    request: bytes = b""
    response_headers: bytes = b""
    content: bytes = b""
    content_size: Optional[int] = None
    # absolute Location target of a 3xx response
    redirect_url: Optional[str] = None
    recorded_size: Optional[int] = None
    annotations: List[str] = field(default_factory=list)
    non_fatal_failures: List[BaseException] = field(default_factory=list)

    def __post_init__(self):
        if self.content_size is None:
            self.content_size = len(self.content)
        if self.recorded_size is None:
            self.recorded_size = len(self.request) + len(self.response_headers) + len(self.content)

    def annotate_unwritten(self, reason: str):
        self.annotations.append(f"{ANNOTATION_UNWRITTEN}:{reason}")
