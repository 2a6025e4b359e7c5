"""
Tests for layered configuration and quota loading.

Covers:
- Precedence: defaults < environment < config file < CLI
- ${VAR} substitution in config files
- Quota validation
- Sample config round-trips through the loader
"""
import os
import sys
from argparse import Namespace

import pytest
import yaml

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quotalib.config import (
    ENV_VAR_MAPPING,
    args_to_config,
    generate_sample_config,
    load_config,
    load_config_file,
    load_env_config,
    load_quotas,
    merge_configs,
)
from quotalib.constants import DEFAULT_MAX_RECORDS, DEFAULT_SKU_REGIONS
from quotalib.models import Quota


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from real QUOTA_* variables and default config files."""
    for env_var in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


def make_args(**kwargs):
    fields = dict(
        config=None, subscription_id=None, default_client=None, client_tag=None,
        use_client_tags=False, resource_groups=None, regions=None,
        max_records=None, parallel_workers=None, log_level=None,
    )
    fields.update(kwargs)
    return Namespace(**fields)


def write_config(tmp_path, data, name="config.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    path.chmod(0o600)
    return str(path)


class TestLoadConfig:
    def test_defaults(self):
        config = load_config(make_args())

        assert config['default_client'] == "Default"
        assert config['client_tag'] == "Client"
        assert config['use_client_tags'] is False
        assert config['regions'] == DEFAULT_SKU_REGIONS
        assert config['max_records'] == DEFAULT_MAX_RECORDS
        assert config['quotas'] == {}

    def test_env_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("QUOTA_USE_CLIENT_TAGS", "true")
        monkeypatch.setenv("QUOTA_RESOURCE_GROUPS", "rg-a,rg-b")
        monkeypatch.setenv("QUOTA_MAX_RECORDS", "500")

        config = load_config(make_args())

        assert config['use_client_tags'] is True
        assert config['resource_groups'] == ["rg-a", "rg-b"]
        assert config['max_records'] == 500

    def test_file_overrides_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("QUOTA_CLIENT_TAG", "FromEnv")
        path = write_config(tmp_path, {"client_tag": "FromFile"})

        config = load_config(make_args(config=path))

        assert config['client_tag'] == "FromFile"

    def test_cli_overrides_file(self, tmp_path):
        path = write_config(tmp_path, {"client_tag": "FromFile", "subscription_id": "sub-file"})

        config = load_config(make_args(config=path, client_tag="FromCli", resource_groups="rg-x"))

        assert config['client_tag'] == "FromCli"
        assert config['subscription_id'] == "sub-file"
        assert config['resource_groups'] == ["rg-x"]

    def test_default_config_location(self, tmp_path):
        write_config(tmp_path, {"default_client": "Contoso"}, name="quota-config.yaml")

        config = load_config(make_args())

        assert config['default_client'] == "Contoso"

    def test_missing_config_file(self):
        with pytest.raises(FileNotFoundError):
            load_config(make_args(config="/nonexistent/config.yaml"))

    def test_use_client_tags_flag_only_enables(self):
        assert 'use_client_tags' not in args_to_config(make_args())
        assert args_to_config(make_args(use_client_tags=True))['use_client_tags'] is True


class TestConfigFile:
    def test_env_substitution(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "sub-123")
        path = write_config(tmp_path, {
            "subscription_id": "${AZURE_SUBSCRIPTION_ID}",
            "client_tag": "${MISSING_TAG:-Tenant}",
        })

        config = load_config_file(path)

        assert config['subscription_id'] == "sub-123"
        assert config['client_tag'] == "Tenant"

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            load_config_file(str(path))

    def test_merge_nested(self):
        merged = merge_configs(
            {"quotas": {"A": {"core_hours": 1}}},
            {"quotas": {"B": {"core_hours": 2}}, "client_tag": None},
        )

        assert merged == {"quotas": {"A": {"core_hours": 1}, "B": {"core_hours": 2}}}

    def test_load_env_config_ignores_unset(self, monkeypatch):
        monkeypatch.setenv("QUOTA_SUBSCRIPTION_ID", "sub-env")

        assert load_env_config() == {"subscription_id": "sub-env"}


class TestLoadQuotas:
    def test_valid(self):
        quotas = load_quotas({"quotas": {
            "ClientA": {"core_hours": 10000, "data_out_gb": "100", "blob_storage_gb": 500.5},
        }})

        assert quotas == {"ClientA": Quota(core_hours=10000, data_out_gb=100, blob_storage_gb=500.5)}

    def test_empty(self):
        assert load_quotas({}) == {}
        assert load_quotas({"quotas": None}) == {}

    @pytest.mark.parametrize("ceilings", [
        {"core_hours": -1},
        {"core_hours": "lots"},
        {"cpu_hours": 10},
    ])
    def test_invalid(self, ceilings):
        with pytest.raises(ValueError):
            load_quotas({"quotas": {"ClientA": ceilings}})

    def test_not_a_mapping(self):
        with pytest.raises(ValueError):
            load_quotas({"quotas": ["ClientA"]})


def test_sample_config_loads(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "sub-sample")
    path = tmp_path / "sample.yaml"
    path.write_text(generate_sample_config())
    path.chmod(0o600)

    config = load_config_file(str(path))
    quotas = load_quotas(config)

    assert config['subscription_id'] == "sub-sample"
    assert quotas["Default"] == Quota(
        core_hours=10000, data_out_gb=100, data_in_gb=500,
        disk_storage_gb=1000, blob_storage_gb=500,
    )
