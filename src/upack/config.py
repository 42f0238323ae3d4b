import configparser
import os
from pathlib import Path
from typing import Optional, Union

from .logger import setup_logger

_logger = setup_logger()


def default_machine_registry() -> Path:
    if os.name == "nt":
        return Path(os.environ.get("PROGRAMDATA", r"C:\ProgramData")) / "upack"
    return Path("/var/lib/upack")


class Config:
    def __init__(self, config_dir: Optional[Union[str, Path]] = None) -> None:
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".config" / "upack"
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_path = self.config_dir / "upack.conf"

        # Default values
        self.user_registry: Path = Path.home() / ".upack"
        self.machine_registry: Path = default_machine_registry()
        self.show_progress: bool = True
        self.log_level: str = "INFO"

        # Registry Defaults
        self.lock_timeout: float = 300.0
        self.verify_cache: bool = True

        # Network Defaults
        self.timeout_connect: int = 10
        self.timeout_read: int = 60
        self.retries: int = 3
        self.verify_ssl: bool = True
        self.proxy_url: Optional[str] = None
        self.ca_bundle: Optional[str] = None

        self.load()

    def load(self) -> None:
        parser = configparser.ConfigParser()
        if not self.config_path.exists():
            _logger.debug(f"Config file {self.config_path} not found. Creating default config.")
            self._write_default_config()

        parser.read(self.config_path)

        # [general]
        self.user_registry = Path(parser.get("general", "user_registry", fallback=str(self.user_registry)))
        self.machine_registry = Path(parser.get("general", "machine_registry", fallback=str(self.machine_registry)))
        self.show_progress = parser.getboolean("general", "show_progress", fallback=self.show_progress)
        self.log_level = parser.get("general", "log_level", fallback=self.log_level)

        # [registry]
        self.lock_timeout = parser.getfloat("registry", "lock_timeout", fallback=self.lock_timeout)
        self.verify_cache = parser.getboolean("registry", "verify_cache", fallback=self.verify_cache)

        # [network]
        if parser.has_section("network"):
            self.timeout_connect = parser.getint("network", "timeout_connect", fallback=10)
            self.timeout_read = parser.getint("network", "timeout_read", fallback=60)
            self.retries = parser.getint("network", "retries", fallback=3)
            self.verify_ssl = parser.getboolean("network", "verify_ssl", fallback=True)

            # Handle empty strings mapping to None
            ca = parser.get("network", "ca_bundle", fallback=None)
            self.ca_bundle = ca if ca else None
            p_url = parser.get("network", "proxy_url", fallback=None)
            self.proxy_url = p_url if p_url else None

    def _write_default_config(self) -> None:
        parser = configparser.ConfigParser()
        parser["general"] = {
            "user_registry": str(self.user_registry),
            "machine_registry": str(self.machine_registry),
            "show_progress": str(self.show_progress).lower(),
            "log_level": self.log_level,
        }
        parser["registry"] = {
            "lock_timeout": str(self.lock_timeout),
            "verify_cache": str(self.verify_cache).lower(),
        }
        parser["network"] = {
            "timeout_connect": str(self.timeout_connect),
            "timeout_read": str(self.timeout_read),
            "retries": str(self.retries),
            "verify_ssl": str(self.verify_ssl).lower(),
            "ca_bundle": self.ca_bundle or "",
            "proxy_url": self.proxy_url or "",
        }
        with self.config_path.open("w") as f:
            parser.write(f)
        _logger.debug(f"Default config written to {self.config_path}")
