"""Loading of the predefined job catalog from YAML."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from jobshot_api.core.config import Settings, get_settings
from jobshot_api.models.job import DEFAULT_RESOURCES, JobCatalog, JobDefinition
from jobshot_api.services.job_builder import slugify

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Raised when the job catalog cannot be loaded or is inconsistent."""

    pass


class JobCatalogService:
    """Reads the job catalog file on every call so edits apply without a restart."""

    def __init__(self, settings: Settings | None = None, path: Path | None = None) -> None:
        self.settings = settings or get_settings()
        self.path = path or self.settings.jobs_config_path

    def load(self) -> JobCatalog:
        """Load and validate the catalog.

        Returns:
            The parsed catalog

        Raises:
            CatalogError: If the file is missing, not valid YAML, does not match
                the catalog schema, or two jobs derive the same object name
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CatalogError(f"Cannot read {self.path}: {e}") from e

        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise CatalogError(f"Invalid YAML in {self.path}: {e}") from e

        try:
            catalog = JobCatalog.model_validate(raw)
        except ValidationError as e:
            raise CatalogError(f"Invalid job catalog {self.path}: {e}") from e

        seen: dict[str, str] = {}
        for job in catalog.jobs:
            slug = slugify(job.name)
            if slug in seen:
                raise CatalogError(
                    f"Jobs '{seen[slug]}' and '{job.name}' both map to the "
                    f"Kubernetes name '{slug}'; rename one of them"
                )
            seen[slug] = job.name

        logger.debug("Loaded %d jobs from %s", len(catalog.jobs), self.path)
        return catalog

    def listing(self) -> JobCatalog:
        """Load the catalog for display, filling in default resources.

        Entries without resources get ``DEFAULT_RESOURCES`` so the run dialog
        starts from concrete values. ``load`` and ``find`` are unaffected.
        """
        jobs = [
            job.model_copy(update={"resources": DEFAULT_RESOURCES}) if job.resources is None else job
            for job in self.load().jobs
        ]
        return JobCatalog(jobs=jobs)

    def find(self, name: str) -> JobDefinition | None:
        """Find the catalog entry whose derived name matches ``name``."""
        slug = slugify(name)
        for job in self.load().jobs:
            if slugify(job.name) == slug:
                return job
        return None


# Global singleton instance
_catalog_service: JobCatalogService | None = None


def get_catalog_service() -> JobCatalogService:
    """Get the global JobCatalogService instance."""
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = JobCatalogService()
    return _catalog_service
