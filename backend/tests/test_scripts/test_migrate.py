"""Unit tests for the migration helper script."""

import sys
from pathlib import Path
from unittest.mock import patch

# Add scripts to path
scripts_dir = Path(__file__).parent.parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

import migrate  # noqa: E402


class TestMigrateScript:
    def test_config_points_at_alembic_dir(self):
        cfg = migrate.get_config()
        assert cfg.get_main_option("script_location").endswith("alembic")

    def test_upgrade_defaults_to_head(self):
        with patch("migrate.command.upgrade") as upgrade:
            assert migrate.main(["upgrade"]) == 0
        assert upgrade.call_args.args[1] == "head"

    def test_downgrade_one_step(self):
        with patch("migrate.command.downgrade") as downgrade:
            assert migrate.main(["downgrade"]) == 0
        assert downgrade.call_args.args[1] == "-1"

    def test_explicit_revision(self):
        with patch("migrate.command.upgrade") as upgrade:
            migrate.main(["upgrade", "0001_initial"])
        assert upgrade.call_args.args[1] == "0001_initial"

    def test_usage_errors(self, capsys):
        assert migrate.main([]) == 2
        assert migrate.main(["sideways"]) == 2
        assert "Unknown operation" in capsys.readouterr().out
