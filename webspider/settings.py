from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import ConfigurationError

DEFAULT_HEADERS = {
    "User-Agent": "webspider/1.0 (+https://pypi.org/project/webspider/)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

# -------------------- Settings --------------------


@dataclass
class ClientSettings:
    concurrency: int = 1
    method: str = "GET"
    timeout: Optional[float] = 15.0
    retries: int = 3
    # seconds the scheduler waits for a completion before re-checking the queue
    poll_interval: float = 0.05
    headers: Optional[Dict[str, str]] = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be positive or None")
        if self.retries < 0:
            raise ConfigurationError("retries must not be negative")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if not self.method or not self.method.isalpha():
            raise ConfigurationError(f"invalid HTTP method: {self.method!r}")
        self.method = self.method.upper()


@dataclass
class DiscoveryOptions:
    extract_href: bool = True
    extract_src: bool = False
    look_in_css: bool = False
    rewrite_urls: bool = False


@dataclass
class SpiderSettings:
    discard_fragment: bool = True


@dataclass
class MirrorSettings:
    output_dir: Union[str, Path]
    additional_urls: List[str] = field(default_factory=list)
    track_slash_redirects: bool = False
    rewrite_links: bool = False

    def __post_init__(self) -> None:
        if not str(self.output_dir).strip():
            raise ConfigurationError("output_dir must not be empty")
        self.output_dir = Path(self.output_dir)
        if self.output_dir.exists() and not self.output_dir.is_dir():
            raise ConfigurationError(f"output_dir is not a directory: {self.output_dir}")


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        import tomllib

        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigurationError("Top-level YAML must be a mapping")
            return data
    else:
        raise ConfigurationError("Unsupported config format. Use .toml or .yaml")
