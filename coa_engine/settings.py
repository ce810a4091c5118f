"""COA engine settings.

Reads configuration from environment variables (a repository ``.env`` is
loaded first when present):

- COA_TEMPLATE_DIR: Template root (base/, countries/, industries/)
- COA_RULES_PATH: Assignment rules file
- COA_COMPATIBILITY_PATH: Country/industry compatibility table
- COA_LOCK_ENFORCEMENT: "advisory" (warn) or "enforced" (block)
- COA_ASSIGNMENT_BACKEND: "file" (local JSON store) or "api" (HTTP persistence API)
- COA_ASSIGNMENT_API_URL: Base URL of the persistence API (backend=api)
- COA_ASSIGNMENT_API_TOKEN: Bearer token for the persistence API
- COA_ASSIGNMENT_STORE_DIR: Directory of the local JSON store (backend=file)
- COA_LOG_LEVEL: DEBUG, INFO, WARNING, ...
- COA_LOG_JSON: "true" for JSON log lines
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Mapping

from dotenv import load_dotenv

from .models import LockEnforcement

REPO_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_DIR = Path(__file__).resolve().parent

DEFAULT_TEMPLATE_DIR = PACKAGE_DIR / "config" / "templates"
DEFAULT_RULES_PATH = PACKAGE_DIR / "config" / "rules" / "assignment-rules.json"
DEFAULT_COMPATIBILITY_PATH = PACKAGE_DIR / "config" / "rules" / "compatibility.json"
DEFAULT_STORE_DIR = REPO_ROOT / "data" / "coa_assignments"

BACKENDS = ("file", "api")


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load a .env file if it exists (does not override the environment)."""
    env_path = path or REPO_ROOT / ".env"
    if env_path.exists():
        return load_dotenv(env_path)
    return False


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class CoaSettings:
    """Resolved configuration for the COA services."""
    template_dir: Path = DEFAULT_TEMPLATE_DIR
    rules_path: Path = DEFAULT_RULES_PATH
    compatibility_path: Path = DEFAULT_COMPATIBILITY_PATH
    lock_enforcement: LockEnforcement = LockEnforcement.ADVISORY
    assignment_backend: str = "file"
    assignment_api_url: Optional[str] = None
    assignment_api_token: Optional[str] = None
    assignment_store_dir: Path = DEFAULT_STORE_DIR
    log_level: int = logging.INFO
    log_json: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, load_dotenv_file: bool = True) -> "CoaSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            load_dotenv_file: Load the repository .env first

        Raises:
            ValueError: If a variable has an invalid value
        """
        if environ is None:
            if load_dotenv_file:
                load_env_file()
            environ = os.environ

        lock = environ.get("COA_LOCK_ENFORCEMENT", LockEnforcement.ADVISORY.value).strip().lower()
        try:
            lock_enforcement = LockEnforcement(lock)
        except ValueError:
            raise ValueError(
                f"COA_LOCK_ENFORCEMENT must be one of "
                f"{[m.value for m in LockEnforcement]}, got {lock!r}"
            )

        backend = environ.get("COA_ASSIGNMENT_BACKEND", "file").strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"COA_ASSIGNMENT_BACKEND must be one of {list(BACKENDS)}, got {backend!r}")

        api_url = environ.get("COA_ASSIGNMENT_API_URL") or None
        if backend == "api" and not api_url:
            raise ValueError(
                "COA_ASSIGNMENT_API_URL environment variable not set. "
                "Set it to the assignment API base URL when COA_ASSIGNMENT_BACKEND=api"
            )

        level_name = environ.get("COA_LOG_LEVEL", "INFO").strip().upper()
        log_level = logging.getLevelName(level_name)
        if not isinstance(log_level, int):
            raise ValueError(f"COA_LOG_LEVEL is not a logging level: {level_name!r}")

        return cls(
            template_dir=Path(environ.get("COA_TEMPLATE_DIR") or DEFAULT_TEMPLATE_DIR),
            rules_path=Path(environ.get("COA_RULES_PATH") or DEFAULT_RULES_PATH),
            compatibility_path=Path(environ.get("COA_COMPATIBILITY_PATH") or DEFAULT_COMPATIBILITY_PATH),
            lock_enforcement=lock_enforcement,
            assignment_backend=backend,
            assignment_api_url=api_url,
            assignment_api_token=environ.get("COA_ASSIGNMENT_API_TOKEN") or None,
            assignment_store_dir=Path(environ.get("COA_ASSIGNMENT_STORE_DIR") or DEFAULT_STORE_DIR),
            log_level=log_level,
            log_json=_flag(environ.get("COA_LOG_JSON")),
        )
