"""
Tests for LedgerConfig and the YAML loader.
"""

import pytest
import yaml

from lab_config import LedgerConfig, load_ledger_config
from lab_config.loader import compute_checksum, parse_ledger_config


class TestSchema:
    def test_defaults(self):
        config = LedgerConfig.with_defaults()

        assert config.central_store_location == "central-store"
        assert config.admin_grace_days == 2
        assert config.is_admin("admin")
        assert config.is_admin("central_store_admin")
        assert not config.is_admin("faculty")
        assert config.known_roles == {"admin", "central_store_admin", "faculty", "lab_assistant"}

    def test_negative_grace_rejected(self):
        with pytest.raises(ValueError):
            LedgerConfig(admin_grace_days=-1)

    def test_role_in_both_classes_rejected(self):
        with pytest.raises(ValueError):
            LedgerConfig(admin_roles=frozenset({"admin"}), standard_roles=frozenset({"admin"}))

    def test_central_store_and_faculty_must_differ(self):
        with pytest.raises(ValueError):
            LedgerConfig(central_store_location="x", faculty_location="x")

    def test_blank_central_store_rejected(self):
        with pytest.raises(ValueError):
            LedgerConfig(central_store_location="  ")


class TestLoader:
    def test_packaged_defaults_match_schema_defaults(self):
        assert load_ledger_config() == LedgerConfig.with_defaults()

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "central_store_location": "main-store",
                    "admin_grace_days": 4,
                    "admin_roles": ["admin"],
                    "standard_roles": ["faculty"],
                }
            )
        )

        config = load_ledger_config(path)

        assert config.central_store_location == "main-store"
        assert config.admin_grace_days == 4
        assert config.admin_roles == frozenset({"admin"})

    def test_empty_document_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_ledger_config(path) == LedgerConfig.with_defaults()

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="admin_grace_dayz"):
            parse_ledger_config({"admin_grace_dayz": 3})

    def test_roles_must_be_a_list(self):
        with pytest.raises(ValueError):
            parse_ledger_config({"admin_roles": "admin"})

    def test_non_mapping_document_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            load_ledger_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_ledger_config(tmp_path / "nope.yaml")

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
