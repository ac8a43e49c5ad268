"""Category configuration loader for the standards catalog.

Loads and validates the curated category table from YAML. Each category names
the work it applies to (work types, service types, development phases), whether
it is mandatory, a priority and the URLs that belong to it.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "standards.yaml"

PRIORITIES = ("critical", "high", "medium", "low")


class ApplicabilityContext(BaseModel):
    """Where a category of standards applies."""
    work_types: List[str] = Field(default_factory=list)
    service_types: List[str] = Field(default_factory=list)
    development_phases: List[str] = Field(default_factory=list)
    mandatory: bool = False
    priority: str = Field(default="medium", pattern="^(critical|high|medium|low)$")


class StandardCategory(BaseModel):
    """Configuration for one category of standards."""
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    applicability: ApplicabilityContext = Field(default_factory=ApplicabilityContext)
    urls: List[str] = Field(default_factory=list)


class CategoryLoader:
    """Loads the category table from a YAML file, caching it by mtime."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: YAML file with a top-level ``categories`` list.
                         Defaults to ``standards.yaml`` next to this module.
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._cache: Optional[List[StandardCategory]] = None
        self._last_modified: Optional[float] = None

    def load(self) -> List[StandardCategory]:
        """Return every configured category.

        A missing or invalid file yields an empty list and an error in the log.
        """
        if not self.config_path.exists():
            logger.warning(f"Category configuration not found: {self.config_path}")
            return []

        current_mtime = self.config_path.stat().st_mtime
        if self._cache is not None and self._last_modified is not None \
                and self._last_modified >= current_mtime:
            return self._cache

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML file {self.config_path}: {e}")
            return []

        if not data or not isinstance(data, dict):
            logger.error(f"Empty or invalid category file: {self.config_path}")
            return []

        try:
            categories = [StandardCategory(**entry) for entry in data.get('categories') or []]
        except (ValidationError, TypeError) as e:
            logger.error(f"Invalid category configuration in {self.config_path}: {e}")
            return []

        seen = set()
        for category in categories:
            if category.id in seen:
                logger.warning(f"Duplicate category id in {self.config_path}: {category.id}")
            seen.add(category.id)

        self._cache = categories
        self._last_modified = current_mtime
        logger.info(f"Loaded {len(categories)} categories from {self.config_path}")
        return categories

    def reload_cache(self):
        """Clear the cache to force a reload."""
        self._cache = None
        self._last_modified = None
        logger.info("Category configuration cache cleared")

    def descriptions(self) -> Dict[str, str]:
        """Category description keyed by category name."""
        return {category.name: category.description for category in self.load()}

    def get_all_urls(self) -> List[str]:
        urls: List[str] = []
        for category in self.load():
            urls.extend(category.urls)
        return urls

    def get_category_for_url(self, url: str) -> Optional[StandardCategory]:
        """First category listing ``url``."""
        for category in self.load():
            if url in category.urls:
                return category
        return None

    def get_applicable_categories(self, work_types: Sequence[str], service_types: Sequence[str],
                                  development_phases: Sequence[str]) -> List[StandardCategory]:
        """Categories matching at least one work type, service type and phase."""
        applicable = []
        for category in self.load():
            context = category.applicability
            if (any(work in context.work_types for work in work_types)
                    and any(service in context.service_types for service in service_types)
                    and any(phase in context.development_phases for phase in development_phases)):
                applicable.append(category)
        return applicable

    def get_categories_by_priority(self, priority: str) -> List[StandardCategory]:
        if priority not in PRIORITIES:
            raise ValueError(f"Invalid priority: {priority}")
        return [c for c in self.load() if c.applicability.priority == priority]

    def get_mandatory_categories(self) -> List[StandardCategory]:
        return [c for c in self.load() if c.applicability.mandatory]
