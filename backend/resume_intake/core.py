from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Runtime configuration, read from environment variables or a .env file.
    List values accept a comma-separated string.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # File limits
    MAX_FILE_MB: int = 10
    ALLOWED_EXTENSIONS: Union[List[str], str] = ".pdf,.docx,.doc"
    ALLOWED_MIME_TYPES: Union[List[str], str] = (
        "application/pdf,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "application/msword"
    )
    PARSE_TIMEOUT_SECONDS: float = 30.0
    # idle sessions (and the file bytes they hold) are dropped after this
    SESSION_TTL_SECONDS: float = 3600.0

    # Remote analysis capability
    ANALYSIS_SERVICE_URL: str = "http://localhost:8000"
    ANALYSIS_TIMEOUT_SECONDS: float = 60.0
    SEMANTIC_MATCHING: bool = True

    UPLOAD_DIR: Path = BASE_DIR / "uploads"
    CORS_ORIGINS: Union[List[str], str] = "http://localhost:3000"
    RATE_LIMIT: str = "5/day"

    @field_validator("ALLOWED_EXTENSIONS", "ALLOWED_MIME_TYPES", "CORS_ORIGINS", mode="before")
    @classmethod
    def parse_csv(cls, v):
        if isinstance(v, str):
            return [item.strip().lower() for item in v.split(",") if item.strip()]
        return v

    @property
    def is_prod(self) -> bool:
        return self.ENV.lower() in {"prod", "production"}

    @property
    def max_file_bytes(self) -> int:
        return self.MAX_FILE_MB * 1024 * 1024


settings = Settings()


class ExtractResponse(BaseModel):
    status: bool = True
    session_id: str


class FileMetadataOut(BaseModel):
    file_name: str
    file_size: int
    mime_type: str
    page_count: Optional[int] = None
    word_count: int = 0
    character_count: int = 0
    extraction_time_ms: int = 0


class StatusResponse(BaseModel):
    status: bool = True
    session_id: str
    phase: str
    stage: str
    progress: int = Field(ge=0, le=100)
    is_uploading: bool = False
    error: Optional[str] = None
    has_text: bool = False
    metadata: Optional[FileMetadataOut] = None


class TextResponse(BaseModel):
    status: bool = True
    session_id: str
    text: str


class TargetJobIn(BaseModel):
    title: str
    company: Optional[str] = None
    keywords: Optional[str] = None
    description: Optional[str] = None


class AnalyzeRequest(BaseModel):
    resume_text: str
    target_job: TargetJobIn


class AnalyzeResponse(BaseModel):
    status: bool = True
    data: Dict[str, Any]


class AnalysisStartResponse(BaseModel):
    status: bool = True
    session_id: str
    started: bool


class AnalysisStateResponse(BaseModel):
    status: bool = True
    session_id: str
    is_loading: bool
    progress: int = Field(ge=0, le=100)
    stage: str
    message: str


class HandoffResponse(BaseModel):
    status: bool = True
    session_id: str
    result: Dict[str, Any]
    target_job: Optional[TargetJobIn] = None


class StoredFileResponse(BaseModel):
    id: str
    url: str
    name: str
    size: int
    mime_type: str
