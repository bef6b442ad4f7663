"""
Data models and constants for treeserve
"""

from enum import Enum
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


class ResponseCode(Enum):
    """Standard response codes"""
    SUCCESS = 0
    ERROR = 1
    BAD_REQUEST = 400
    NOT_FOUND = 404
    CONFLICT = 409
    RANGE_NOT_SATISFIABLE = 416
    INTERNAL_ERROR = 500


@dataclass
class ApiResponse:
    """Standard API response format"""
    code: int = ResponseCode.SUCCESS.value
    msg: str = "success"
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "msg": self.msg,
            "data": self.data
        }


@dataclass
class FileInfo:
    """Directory entry as shown in listings"""
    name: str
    path: str
    size: int
    is_dir: bool
    modified: float
    mime_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "is_dir": self.is_dir,
            "modified": self.modified,
            "mime_type": self.mime_type
        }


@dataclass
class Breadcrumb:
    """One step of the navigation trail above a listing"""
    name: str
    path: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "path": self.path}


@dataclass
class TokenInfo:
    """Session token handed to a client after login"""
    token: str
    expires_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "expires_at": datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat(),
        }


@dataclass
class TlsConfig:
    """TLS configuration"""
    enabled: bool = True
    certfile: str = ""
    keyfile: str = ""

    @property
    def has_external_cert(self) -> bool:
        return bool(self.certfile and self.keyfile)


@dataclass
class ServerConfig:
    """Server configuration"""
    addr: str = "0.0.0.0"
    port: int = 8080
    root: Path = Path(".")
    tls: TlsConfig = field(default_factory=TlsConfig)

    def __post_init__(self):
        # Root is fixed for the process lifetime, so make it absolute once
        self.root = Path(self.root).expanduser().absolute()


@dataclass
class AuthConfig:
    """Static credential pair and session lifetimes"""
    username: str = ""
    password: str = ""
    password_bcrypt: bool = False
    session_hours: float = 24
    remember_days: float = 30

    @property
    def enabled(self) -> bool:
        return bool(self.username and self.password)

    @property
    def session_seconds(self) -> float:
        return self.session_hours * 3600

    @property
    def remember_seconds(self) -> float:
        return self.remember_days * 24 * 3600


@dataclass
class LoggingConfig:
    """Logging configuration"""
    json: bool = False
    file: str = ""
    level: str = "INFO"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class UiConfig:
    """UI configuration"""
    title: str = "treeserve"
    maxUploadSize: Optional[int] = None


@dataclass
class Config:
    """Main configuration container"""
    server: ServerConfig = field(default_factory=ServerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ui: UiConfig = field(default_factory=UiConfig)


# Listing sort keys accepted by / and /list
SORT_FIELDS: List[str] = ["name", "time", "size"]

# Cookie carrying the session token
AUTH_COOKIE = "auth_token"

# Default MIME type for unknown files
DEFAULT_MIME_TYPE = 'application/octet-stream'
