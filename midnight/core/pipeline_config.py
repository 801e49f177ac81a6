"""
Pipeline Config
===============
Optional YAML overrides for the values that change between pipeline
versions without code changes.

Example (PIPELINE_CONFIG=midnight.yml):

    schedule: "0 0 * * *"
    snapshot:
      release_tag: 0.5.0-rc1
      asset_name: witnet-rust-testnet-5-tests-storage.tar.gz
      sha256: <64 hex chars>
    packages:
      - g++-9
      - cmake
    e2e_target: e2e-debug

Missing keys fall back to the environment-driven defaults in config.py.
"""
import os
import logging
from typing import List, Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from midnight.core import config
from midnight.core.errors import ConfigurationError
from midnight.models.environment_spec import EnvironmentSpec, SnapshotReference
from midnight.pipeline.schedule import CronSchedule

logger = logging.getLogger(__name__)


class PipelineSettings(BaseModel):
    schedule: str = config.SCHEDULE_CRON
    snapshot: SnapshotReference = SnapshotReference()
    packages: Optional[List[str]] = None
    e2e_target: str = config.E2E_TARGET

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        CronSchedule.parse(v)
        return v

    @property
    def environment(self) -> EnvironmentSpec:
        if self.packages:
            return EnvironmentSpec(packages=self.packages)
        return EnvironmentSpec()


def _read_config(path: str) -> dict:
    if not os.path.isfile(path):
        raise ConfigurationError(f"Pipeline config not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def load_pipeline_settings(path: Optional[str] = None) -> PipelineSettings:
    """
    Load PipelineSettings from a YAML file, or defaults when no file is set.

    ``path`` defaults to PIPELINE_CONFIG.

    Raises
    ------
    ConfigurationError
        If the file is missing, is not valid YAML, or fails validation.
    """
    path = config.PIPELINE_CONFIG if path is None else path
    if not path:
        return PipelineSettings()

    data = _read_config(path)
    try:
        settings = PipelineSettings(**data)
        settings.environment  # validates packages
    except ValidationError as e:
        raise ConfigurationError(f"Invalid pipeline config {path}: {e}") from e

    logger.info("Loaded pipeline config from %s (snapshot %s)", path, settings.snapshot.resolved_url)
    return settings


def load_schedule(path: Optional[str] = None) -> CronSchedule:
    """
    Trigger schedule: the YAML ``schedule`` key, else SCHEDULE_CRON.

    Only the schedule is validated here, so a snapshot or package mistake in
    the same file fails the E2E job instead of stopping the scheduler.
    """
    path = config.PIPELINE_CONFIG if path is None else path
    expression = config.SCHEDULE_CRON
    if path:
        expression = _read_config(path).get("schedule") or expression
    try:
        return CronSchedule.parse(str(expression))
    except ValueError as e:
        raise ConfigurationError(f"Invalid schedule '{expression}': {e}") from e
