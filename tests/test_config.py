"""
tests/test_config.py — config.yaml Loader Tests
=================================================
"""

from __future__ import annotations

import pytest

from taxgate.config import DEFAULT_VERIFICATION_TIMEOUT, load_config

_MINIMAL = """\
community_name: "TaxGate Dev"
bot_prefix: "!"
guild_id: 1468816181854081229
dashboard_port: 8000
admin_role_id: 1234
"""


class TestLoadConfig:
    def test_minimal_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(_MINIMAL, encoding="utf-8")
        cfg = load_config(path)
        assert cfg.community_name == "TaxGate Dev"
        assert cfg.guild_id == 1468816181854081229
        assert cfg.verify_channel_id is None
        assert cfg.verification_timeout_seconds == DEFAULT_VERIFICATION_TIMEOUT

    def test_optional_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            _MINIMAL + "verify_channel_id: 555\nverification_timeout_seconds: 120\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.verify_channel_id == 555
        assert cfg.verification_timeout_seconds == 120

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text('community_name: "x"\n', encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)
