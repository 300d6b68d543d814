"""
Tests for Config - option parsing, snapshots and runtime updates.
"""

import pytest

from modules.config import (
    CONFIG_FIELD_TYPES,
    IMMUTABLE_CONFIG_KEYS,
    OPTION_SPECS,
    Config,
    OptionId,
    OptionKind,
    describe_sinks,
    parse_option_value,
    resolve_config_key,
)


class TestParseOptionValue:
    """Test boundary parsing of raw option values."""

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("TRUE", True), ("1", True), ("on", True),
        ("false", False), ("0", False), ("no", False), (True, True), (False, False),
    ])
    def test_bool(self, raw, expected):
        assert parse_option_value(OptionKind.BOOL, raw) is expected

    def test_bool_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_option_value(OptionKind.BOOL, "maybe")

    def test_int(self):
        assert parse_option_value(OptionKind.INT, " 42 ") == 42
        assert parse_option_value(OptionKind.INT, 7) == 7

    def test_int_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_option_value(OptionKind.INT, "ten")
        with pytest.raises(ValueError):
            parse_option_value(OptionKind.INT, True)

    def test_string_list_from_csv(self):
        assert parse_option_value(OptionKind.STRING_LIST, "alice, bob,,") == ["alice", "bob"]

    def test_string_list_from_list(self):
        assert parse_option_value(OptionKind.STRING_LIST, ["a", " b "]) == ["a", "b"]

    def test_string_list_empty(self):
        assert parse_option_value(OptionKind.STRING_LIST, "") == []


class TestConfigFromOptions:
    """Test building Config from the init options dict."""

    def test_defaults(self):
        config = Config.from_options({})
        assert config.amboss is False
        assert config.expiring_htlcs == 0
        assert config.watch_channels is True
        assert config.watch_gossip is False
        assert config.prometheus_port == 9810

    def test_defaults_as_lightningd_passes_them(self):
        options = {option_id.value: spec.default for option_id, spec in OPTION_SPECS.items()}
        config = Config.from_options(options)
        assert config == Config()

    def test_parses_every_kind(self):
        config = Config.from_options({
            "vitality-amboss": "true",
            "vitality-expiring-htlcs": "12",
            "vitality-telegram-usernames": "111,222",
            "vitality-smtp-server": "smtp.example.com",
        })
        assert config.amboss is True
        assert config.expiring_htlcs == 12
        assert config.telegram_usernames == ["111", "222"]
        assert config.smtp_server == "smtp.example.com"

    def test_invalid_option_raises(self):
        with pytest.raises(ValueError):
            Config.from_options({"vitality-watch-gossip": "sometimes"})

    def test_out_of_range_raises(self):
        with pytest.raises(ValueError):
            Config.from_options({"vitality-smtp-port": "70000"})

    def test_every_option_maps_to_a_field(self):
        config = Config()
        for option_id, spec in OPTION_SPECS.items():
            assert option_id.value.startswith("vitality-")
            assert hasattr(config, spec.field_name)


class TestConfigSnapshot:
    """Test immutable snapshots and derived sink flags."""

    def test_snapshot_is_frozen(self, make_config):
        cfg = make_config().snapshot()
        with pytest.raises(Exception):
            cfg.amboss = True

    def test_snapshot_is_isolated_from_later_updates(self, make_config):
        config = make_config()
        cfg = config.snapshot()
        config.update_runtime("watch_gossip", "true")
        assert cfg.watch_gossip is False
        assert config.snapshot().watch_gossip is True

    def test_mail_requires_every_field(self, mail_and_telegram_config):
        assert mail_and_telegram_config.snapshot().send_mail is True
        mail_and_telegram_config.email_to = ""
        assert mail_and_telegram_config.snapshot().send_mail is False

    def test_mail_requires_port(self, mail_and_telegram_config):
        mail_and_telegram_config.smtp_port = 0
        assert mail_and_telegram_config.snapshot().send_mail is False

    def test_telegram_requires_recipient(self, mail_and_telegram_config):
        assert mail_and_telegram_config.snapshot().send_telegram is True
        mail_and_telegram_config.telegram_usernames = []
        assert mail_and_telegram_config.snapshot().send_telegram is False

    @pytest.mark.parametrize("overrides,expected", [
        ({}, True),
        ({"watch_channels": False}, False),
        ({"watch_channels": False, "watch_gossip": True}, True),
        ({"watch_channels": False, "expiring_htlcs": 6}, True),
    ])
    def test_channel_watch_enabled(self, make_config, overrides, expected):
        assert make_config(**overrides).snapshot().channel_watch_enabled is expected

    def test_public_dict_masks_secrets(self, mail_and_telegram_config):
        public = mail_and_telegram_config.snapshot().public_dict()
        assert public["smtp_password"] == "***"
        assert public["telegram_token"] == "***"
        assert public["telegram_usernames"] == ["111", "222"]
        assert public["send_mail"] is True


class TestRuntimeUpdate:
    """Test vitality-config set semantics."""

    def test_update_success(self, make_config):
        config = make_config()
        result = config.update_runtime("expiring_htlcs", "18")

        assert result["status"] == "success"
        assert result["old_value"] == 0
        assert result["new_value"] == 18
        assert result["version"] == 1
        assert config.expiring_htlcs == 18

    def test_update_bumps_snapshot_version(self, make_config):
        config = make_config()
        config.update_runtime("amboss", "true")
        config.update_runtime("amboss", "false")
        assert config.snapshot().version == 2

    def test_immutable_key_rejected(self, make_config):
        config = make_config()
        for key in IMMUTABLE_CONFIG_KEYS:
            assert "error" in config.update_runtime(key, "1")

    def test_unknown_key_rejected(self, make_config):
        assert "error" in make_config().update_runtime("_version", "5")

    def test_invalid_value_leaves_config_untouched(self, make_config):
        config = make_config()
        result = config.update_runtime("expiring_htlcs", "-1")
        assert "error" in result
        assert config.expiring_htlcs == 0
        assert config.version == 0

    def test_secret_values_are_masked(self, make_config):
        result = make_config().update_runtime("smtp_password", "s3cret")
        assert result["old_value"] == "***"
        assert result["new_value"] == "***"

    def test_string_list_update(self, make_config):
        config = make_config()
        config.update_runtime("telegram_usernames", "a,b")
        assert config.snapshot().telegram_usernames == ("a", "b")


class TestHelpers:

    def test_resolve_option_name(self):
        assert resolve_config_key("vitality-watch-gossip") == "watch_gossip"

    def test_resolve_field_name(self):
        assert resolve_config_key("watch_gossip") == "watch_gossip"
        assert resolve_config_key("watch-gossip") == "watch_gossip"

    def test_describe_sinks(self, make_config, mail_and_telegram_config):
        silent = describe_sinks(make_config().snapshot())
        assert all("Insufficient" in line for line in silent)

        active = describe_sinks(mail_and_telegram_config.snapshot())
        assert active[0] == "Will try to send notifications via email"
        assert "111, 222" in active[1]

    def test_field_types_cover_every_option(self):
        assert set(CONFIG_FIELD_TYPES) == {spec.field_name for spec in OPTION_SPECS.values()}
        assert CONFIG_FIELD_TYPES["amboss"] == OptionKind.BOOL
        assert OPTION_SPECS[OptionId.EXPIRING_HTLCS].kind == OptionKind.INT
