import dataclasses
import typing
from dataclasses import dataclass

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Config:
    """Server settings, read-only once the server starts.

    Setting ``username`` and ``password`` makes username/password
    authentication mandatory; leaving both unset runs an open proxy.
    """

    host: str = "0.0.0.0"
    port: int = 61080
    username: typing.Optional[str] = None
    password: typing.Optional[str] = None
    connect_timeout: float = 10.0
    idle_timeout: float = 300.0
    handshake_timeout: float = 30.0
    chunk_size: int = 8192
    sequential: bool = False

    def __post_init__(self):
        if not 0 <= self.port <= 0xFFFF:
            raise ConfigError(f"port out of range: {self.port}")
        if (self.username is None) != (self.password is None):
            raise ConfigError("username and password must be set together")
        for name in ("username", "password"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ConfigError(f"{name} must be a string")
            if not 0 < len(value.encode()) < 256:
                raise ConfigError(f"{name} must be 1 to 255 bytes long")
        for name in ("connect_timeout", "idle_timeout", "handshake_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.chunk_size < 1024:
            raise ConfigError(f"chunk_size too small: {self.chunk_size}")

    @property
    def auth_required(self) -> bool:
        return self.username is not None

    @classmethod
    def from_file(cls, path: str, **overrides) -> "Config":
        """Load a flat YAML mapping of field names; non-None ``overrides``
        win over the file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping, got {type(data).__name__}")
        known = {field.name for field in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"{path}: unknown keys {sorted(unknown)}")
        data.update((k, v) for k, v in overrides.items() if v is not None)
        return cls(**data)
