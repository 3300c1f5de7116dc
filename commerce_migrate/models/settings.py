"""Configuration file model and settings resolution."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from .migration import (
    ConfirmPolicy,
    DEFAULT_KINDS,
    MigrationConfig,
    TargetEnvironment,
    parse_entity_kinds,
)

ENV_SOURCE_API_KEY = "COMMERCE_MIGRATE_SOURCE_API_KEY"
ENV_SOURCE_API_SECRET = "COMMERCE_MIGRATE_SOURCE_API_SECRET"
ENV_TARGET_API_KEY = "COMMERCE_MIGRATE_TARGET_API_KEY"
ENV_BRAND_ID = "COMMERCE_MIGRATE_BRAND_ID"


class ConfigFile(BaseModel):
    """Contents of a --config JSON file. Every field is optional."""
    source_api_key: Optional[str] = None
    source_api_secret: Optional[str] = None
    target_api_key: Optional[str] = None
    brand_id: Optional[str] = None
    mode: Optional[TargetEnvironment] = None
    migrate_types: Optional[List[str]] = None
    confirm_policy: Optional[ConfirmPolicy] = None
    dry_run: Optional[bool] = None
    page_size: Optional[int] = Field(default=None, ge=1, le=100)
    request_timeout: Optional[float] = Field(default=None, gt=0)
    report: Optional[str] = None
    source_options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("migrate_types", mode="before")
    @classmethod
    def split_types(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("migrate_types")
    @classmethod
    def known_types(cls, value):
        if value is not None:
            parse_entity_kinds(value)
        return value

    @classmethod
    def from_json_file(cls, path: str) -> "ConfigFile":
        """
        Load and validate a config file.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the file is not valid JSON or fails validation
        """
        with open(Path(path)) as f:
            data = json.load(f)
        return cls.model_validate(data)


def _first(*values):
    """First value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


def resolve_config(
    source: str,
    cli: Dict[str, Any],
    config_file: Optional[ConfigFile] = None,
    environ: Optional[Mapping[str, str]] = None
) -> MigrationConfig:
    """
    Merge settings with precedence CLI flag > environment > config file > default.

    Args:
        source: Source provider name
        cli: Values given on the command line (None when not given)
        config_file: Parsed config file, if any
        environ: Environment mapping (defaults to os.environ)

    Returns:
        MigrationConfig
    """
    env = os.environ if environ is None else environ
    file = config_file or ConfigFile()

    kinds_value = _first(cli.get("migrate_types"), file.migrate_types)
    mode = _first(cli.get("mode"), file.mode, TargetEnvironment.TEST)
    policy = _first(cli.get("confirm_policy"), file.confirm_policy, ConfirmPolicy.PROMPT)

    source_options = dict(file.source_options)
    source_options.update({k: v for k, v in (cli.get("source_options") or {}).items() if v is not None})

    return MigrationConfig(
        source=source,
        source_api_key=_first(cli.get("source_api_key"), env.get(ENV_SOURCE_API_KEY), file.source_api_key),
        source_api_secret=_first(
            cli.get("source_api_secret"), env.get(ENV_SOURCE_API_SECRET), file.source_api_secret
        ),
        source_options=source_options,
        target_api_key=_first(cli.get("target_api_key"), env.get(ENV_TARGET_API_KEY), file.target_api_key),
        brand_id=_first(cli.get("brand_id"), env.get(ENV_BRAND_ID), file.brand_id),
        environment=TargetEnvironment(mode),
        kinds=parse_entity_kinds(kinds_value) if kinds_value else list(DEFAULT_KINDS),
        interactive=bool(cli.get("interactive", True)),
        confirm_policy=ConfirmPolicy(policy),
        dry_run=bool(_first(cli.get("dry_run") or None, file.dry_run, False)),
        page_size=_first(cli.get("page_size"), file.page_size, 100),
        request_timeout=_first(cli.get("request_timeout"), file.request_timeout, 30.0),
        report_path=_first(cli.get("report"), file.report),
    )
