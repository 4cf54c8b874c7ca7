import json
import os
from dataclasses import asdict, dataclass, replace
from typing import Optional

DEFAULT_TIMEOUT = 30.0
DEFAULT_REDIRECT_LIMIT = 30
DEFAULT_USER_AGENT = "firerest/0.1 (+python-requests)"


def _env_truthy(name: str, default: str = "false") -> bool:
    val = os.getenv(name, default)
    return str(val).strip().lower() in {"true", "1", "t", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class TransportConfig:
    # seconds allowed for connecting and for the response headers to arrive
    timeout: float = DEFAULT_TIMEOUT
    # off by default: every request uses a fresh connection
    keep_alive: bool = False
    max_redirects: int = DEFAULT_REDIRECT_LIMIT
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be >= 0")

    def with_overrides(self, **kwargs) -> "TransportConfig":
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Optional[str] = None) -> TransportConfig:
    """
    Build a TransportConfig from (lowest to highest precedence):
      defaults -> FIREREST_* env vars -> JSON file.
    The JSON file is `path`, else $FIREREST_CONFIG when set. Loading a .env
    file into the environment is left to the application (the CLI does it).
    """
    config = TransportConfig(
        timeout=_env_float("FIREREST_TIMEOUT", DEFAULT_TIMEOUT),
        keep_alive=_env_truthy("FIREREST_KEEP_ALIVE", "false"),
        max_redirects=_env_int("FIREREST_MAX_REDIRECTS", DEFAULT_REDIRECT_LIMIT),
        user_agent=os.getenv("FIREREST_USER_AGENT", DEFAULT_USER_AGENT),
    )
    path = path or os.getenv("FIREREST_CONFIG")
    if not path:
        return config
    with open(path, "r") as f:
        overrides = json.load(f)
    known = set(config.to_dict())
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")
    return config.with_overrides(**overrides)


def save_config(config: TransportConfig, path: str) -> None:
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
