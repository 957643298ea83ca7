"""Configuration schema for loghub-flatten."""

from typing import Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


class LoggingConfig(BaseModel):
    """Console and file logging."""
    
    model_config = ConfigDict(extra='forbid')
    
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level"
    )
    format: Literal["simple", "detailed", "json"] = Field(
        default="simple",
        description="Console log format"
    )
    file: Optional[str] = Field(
        default=None,
        description="Optional rotating log file, written as JSON"
    )
    max_file_size_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=5, ge=0)
    
    @field_validator('level', 'format', mode='before')
    @classmethod
    def normalize_case(cls, v, info):
        """Accept level and format in any case."""
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == 'level' else v.lower()


class FlattenConfig(BaseModel):
    """Configuration for archive flattening."""
    
    model_config = ConfigDict(extra='forbid')
    
    source_dir: str = Field(
        default=".",
        description="Directory scanned (non-recursively) for log archives"
    )
    output_suffix: str = Field(
        default="_logs.txt",
        description="Suffix appended to the archive stem to name the output file"
    )
    copy_chunk_size: int = Field(
        default=65536,
        ge=1024,
        description="Buffer size in bytes used when copying archive data"
    )
    
    @field_validator('output_suffix')
    @classmethod
    def check_output_suffix(cls, v: str) -> str:
        """Reject suffixes that would escape the directory or not be text files."""
        if '/' in v or '\\' in v:
            raise ValueError("output_suffix must not contain path separators")
        if not v.endswith('.txt'):
            raise ValueError("output_suffix must end with '.txt'")
        return v


class LogFlattenConfig(BaseModel):
    """Root configuration for loghub-flatten."""
    
    model_config = ConfigDict(extra='forbid')
    
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    flatten: FlattenConfig = Field(default_factory=FlattenConfig)
