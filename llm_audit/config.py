"""Configuration for the request logger."""

from dataclasses import dataclass
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / ".claude-code-router"
DEFAULT_LOG_FILE = "api-requests.jsonl"


@dataclass
class RequestLoggerOptions:
    """Switches controlling what the request logger captures and where it writes."""

    enabled: bool = True
    log_file_path: str | None = None
    include_system_prompt: bool = True
    include_messages: bool = True
    include_tools: bool = False
    max_message_length: int = 0  # 0 = unlimited

    def __post_init__(self):
        if self.max_message_length < 0:
            raise ValueError(
                f"max_message_length must be >= 0, got {self.max_message_length}"
            )

    @property
    def log_file(self) -> Path:
        """Resolved destination of the JSONL log."""
        if self.log_file_path:
            return Path(self.log_file_path).expanduser()
        return DEFAULT_LOG_DIR / DEFAULT_LOG_FILE
