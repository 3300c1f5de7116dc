"""Tests for configuration resolution."""

import json

import pytest
from pydantic import ValidationError

from commerce_migrate.models.canonical import EntityKind
from commerce_migrate.models.migration import (
    ConfirmPolicy,
    MigrationConfig,
    TargetEnvironment,
    parse_entity_kinds,
)
from commerce_migrate.models.settings import (
    ENV_SOURCE_API_KEY,
    ENV_TARGET_API_KEY,
    ConfigFile,
    resolve_config,
)


class TestParseEntityKinds:

    def test_dependency_order_and_aliases(self):
        kinds = parse_entity_kinds("subscriptions, coupons,products")

        assert kinds == [EntityKind.PRODUCTS, EntityKind.DISCOUNTS, EntityKind.SUBSCRIPTIONS]

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            parse_entity_kinds("products,invoices")


class TestConfigFile:

    def test_load_from_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "target_api_key": "dodo_file",
            "mode": "live_mode",
            "migrate_types": "products,customers",
            "page_size": 50,
        }))

        config_file = ConfigFile.from_json_file(str(path))

        assert config_file.mode == TargetEnvironment.LIVE
        assert config_file.migrate_types == ["products", "customers"]

    def test_validation(self):
        with pytest.raises(ValidationError):
            ConfigFile.model_validate({"page_size": 500})
        with pytest.raises(ValidationError):
            ConfigFile.model_validate({"migrate_types": ["widgets"]})


class TestResolveConfig:

    def test_precedence(self):
        config_file = ConfigFile(source_api_key="file", target_api_key="file", page_size=25)
        environ = {ENV_SOURCE_API_KEY: "env", ENV_TARGET_API_KEY: "env"}

        config = resolve_config("stripe", {"source_api_key": "cli"}, config_file, environ)

        assert config.source_api_key == "cli"
        assert config.target_api_key == "env"
        assert config.page_size == 25

    def test_defaults(self):
        config = resolve_config("stripe", {}, environ={})

        assert config.environment == TargetEnvironment.TEST
        assert config.kinds == [EntityKind.PRODUCTS, EntityKind.DISCOUNTS]
        assert config.confirm_policy == ConfirmPolicy.PROMPT
        assert config.dry_run is False
        assert config.page_size == 100

    def test_source_options_merge(self):
        config_file = ConfigFile(source_options={"organization_id": "org_file", "cashfree_env": "sandbox"})

        config = resolve_config(
            "polar", {"source_options": {"organization_id": "org_cli", "cashfree_env": None}},
            config_file, environ={},
        )

        assert config.source_options == {"organization_id": "org_cli", "cashfree_env": "sandbox"}

    def test_config_round_trip_hides_credentials(self):
        config = MigrationConfig(source="stripe", source_api_key="secret", brand_id="b")

        data = config.to_dict()

        assert "source_api_key" not in data
        assert MigrationConfig.from_dict(data).brand_id == "b"
