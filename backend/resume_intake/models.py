from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List


class Stage(str, Enum):
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class Phase(str, Enum):
    IDLE = "idle"
    SELECTED = "selected"
    VALIDATING = "validating"
    REJECTED = "rejected"
    READY = "ready"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    FAILED = "failed"


class AnalysisStage(str, Enum):
    IDLE = "idle"
    PARSING = "parsing"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class FileStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class FileCategory(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    OTHER = "other"


@dataclass(frozen=True)
class IncomingFile:
    """A user-selected file: name, raw bytes and the declared MIME type (may be empty)."""
    name: str
    data: bytes
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()


@dataclass(frozen=True)
class FileMetadata:
    file_name: str
    file_size: int
    mime_type: str
    word_count: int = 0
    character_count: int = 0
    extraction_time_ms: int = 0
    page_count: Optional[int] = None


@dataclass(frozen=True)
class ParsedFile:
    text: str
    metadata: FileMetadata


@dataclass
class UploadState:
    selected_file: Optional[IncomingFile] = None
    is_uploading: bool = False
    error: Optional[str] = None
    extracted_text: Optional[str] = None
    progress: int = 0
    stage: Stage = Stage.UPLOADING
    is_drag_active: bool = False
    metadata: Optional[FileMetadata] = None
    phase: Phase = Phase.IDLE


@dataclass
class TargetJobInfo:
    title: str = ""
    company: Optional[str] = None
    keywords: Optional[str] = None
    description: Optional[str] = None

    def keyword_list(self) -> List[str]:
        if not self.keywords:
            return []
        return [k.strip().lower() for k in self.keywords.split(",") if k.strip()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "company": self.company,
            "keywords": self.keywords,
            "description": self.description,
        }


@dataclass
class AnalysisLoadingState:
    is_loading: bool = False
    progress: int = 0
    stage: AnalysisStage = AnalysisStage.IDLE
    message: str = ""


@dataclass(frozen=True)
class UploadedFile:
    id: str
    file: IncomingFile
    name: str
    size: int
    mime_type: str
    category: FileCategory
    status: FileStatus = FileStatus.PENDING
    progress: int = 0
    remote_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    uploaded_at: Optional[datetime] = None


@dataclass(frozen=True)
class UploadStats:
    total: int = 0
    completed: int = 0
    uploading: int = 0
    failed: int = 0


@dataclass
class StoredFile:
    file_id: str
    name: str
    mime_type: str
    size: int
    path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
