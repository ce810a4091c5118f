"""
Template Store

Loads chart-of-accounts template documents from the config directory:

    templates/base/universal-base.json
    templates/countries/<code>.json
    templates/industries/<code>.json

Parsed templates are cached in memory per key (``base``, ``country_<code>``,
``industry_<code>``) until clear_cache() is called.
"""

import json
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from core.observability.logging import get_logger

from .models import Template

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent / "config" / "templates"

BASE_TEMPLATE_FILE = Path("base") / "universal-base.json"
COUNTRIES_DIR = "countries"
INDUSTRIES_DIR = "industries"

BASE_KEY = "base"

# Template codes are file stems; anything else is treated as absent
_CODE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class TemplateLoadError(Exception):
    """A template file is missing (base only) or malformed."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


def normalize_code(code: Optional[str]) -> str:
    """Normalize a country/industry code to its file stem form"""
    return (code or "").strip().lower()


class TemplateStore:
    """
    Reads and caches template documents.

    Usage:
        store = TemplateStore()
        base = store.get_base_template()
        india = store.get_country_template("india")  # None if not installed
    """

    def __init__(self, template_dir: Union[str, Path, None] = None):
        """
        Initialize the store.

        Args:
            template_dir: Root directory holding base/, countries/ and industries/
        """
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
        self._cache: Dict[str, Template] = {}

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def get_base_template(self) -> Template:
        """
        Get the universal base template.

        Raises:
            TemplateLoadError: File missing or malformed
        """
        cached = self._cache.get(BASE_KEY)
        if cached is not None:
            return cached

        path = self.template_dir / BASE_TEMPLATE_FILE
        if not path.is_file():
            raise TemplateLoadError(f"Base template not found: {path}", path)

        template = self._load(BASE_KEY, path)
        self._cache[BASE_KEY] = template
        logger.debug(f"Loaded base template {template.id} v{template.version}")
        return template

    def get_country_template(self, code: Optional[str]) -> Optional[Template]:
        """Get a country template, or None if it is not installed"""
        return self._get_overlay(COUNTRIES_DIR, "country", code)

    def get_industry_template(self, code: Optional[str]) -> Optional[Template]:
        """Get an industry template, or None if it is not installed"""
        return self._get_overlay(INDUSTRIES_DIR, "industry", code)

    def _get_overlay(self, directory: str, kind: str, code: Optional[str]) -> Optional[Template]:
        code = normalize_code(code)
        if not code:
            return None

        key = f"{kind}_{code}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if not _CODE_PATTERN.match(code):
            logger.warning(f"Ignoring invalid {kind} template code: {code!r}")
            return None

        path = self.template_dir / directory / f"{code}.json"
        if not path.is_file():
            logger.warning(f"{kind.capitalize()} template not found: {code}")
            return None

        template = self._load(key, path)
        self._cache[key] = template
        return template

    def _load(self, key: str, path: Path) -> Template:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Template.from_dict(key, data)
        except (OSError, json.JSONDecodeError, ValueError) as e:
            raise TemplateLoadError(f"Failed to load template {key} from {path}: {e}", path) from e

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def get_available_country_templates(self) -> List[str]:
        """List installed country template codes"""
        return self._list_codes(COUNTRIES_DIR)

    def get_available_industry_templates(self) -> List[str]:
        """List installed industry template codes"""
        return self._list_codes(INDUSTRIES_DIR)

    def _list_codes(self, directory: str) -> List[str]:
        path = self.template_dir / directory
        try:
            return sorted(p.stem for p in path.iterdir() if p.is_file() and p.suffix == ".json")
        except OSError as e:
            logger.error(f"Could not list templates in {path}: {e}")
            return []

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Drop all cached templates (hot reload)"""
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"Template cache cleared ({count} entries)")

    def cached_keys(self) -> List[str]:
        return sorted(self._cache)
