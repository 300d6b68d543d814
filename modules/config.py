"""
Configuration module for cl-vitality

Contains the Config dataclass that holds all tunable parameters
for the vitality plugin, and the option table that maps
`vitality-*` plugin options onto Config fields.

- OptionId / OptionKind: every plugin option is identified by an enum
  member and parsed once, at the boundary, into its typed value
- ConfigSnapshot: Immutable snapshot for thread-safe cycle execution
- Runtime configuration updates via the vitality-config RPC
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Tuple


PLUGIN_NAME = "vitality"


class OptionKind(Enum):
    """Value shape of a plugin option."""
    BOOL = "bool"
    INT = "int"
    STRING = "string"
    STRING_LIST = "string_list"


class OptionId(Enum):
    """Every option the plugin registers with lightningd."""
    AMBOSS = "vitality-amboss"
    EXPIRING_HTLCS = "vitality-expiring-htlcs"
    WATCH_CHANNELS = "vitality-watch-channels"
    WATCH_GOSSIP = "vitality-watch-gossip"
    TELEGRAM_TOKEN = "vitality-telegram-token"
    TELEGRAM_USERNAMES = "vitality-telegram-usernames"
    SMTP_USERNAME = "vitality-smtp-username"
    SMTP_PASSWORD = "vitality-smtp-password"
    SMTP_SERVER = "vitality-smtp-server"
    SMTP_PORT = "vitality-smtp-port"
    EMAIL_FROM = "vitality-email-from"
    EMAIL_TO = "vitality-email-to"
    ENABLE_PROMETHEUS = "vitality-enable-prometheus"
    PROMETHEUS_PORT = "vitality-prometheus-port"


@dataclass(frozen=True)
class OptionSpec:
    """Static description of one plugin option."""
    field_name: str
    kind: OptionKind
    default: str
    description: str


OPTION_SPECS: Dict[OptionId, OptionSpec] = {
    OptionId.AMBOSS: OptionSpec(
        'amboss', OptionKind.BOOL, 'false',
        'Switch on/off the amboss online ping (default: false)'),
    OptionId.EXPIRING_HTLCS: OptionSpec(
        'expiring_htlcs', OptionKind.INT, '0',
        'Alert when an HTLC is fewer than this many blocks from expiry, 0 disables (default: 0)'),
    OptionId.WATCH_CHANNELS: OptionSpec(
        'watch_channels', OptionKind.BOOL, 'true',
        'Switch on/off watching channel status messages (default: true)'),
    OptionId.WATCH_GOSSIP: OptionSpec(
        'watch_gossip', OptionKind.BOOL, 'false',
        'Switch on/off watching gossip of our channels (default: false)'),
    OptionId.TELEGRAM_TOKEN: OptionSpec(
        'telegram_token', OptionKind.STRING, '',
        'Telegram bot token'),
    OptionId.TELEGRAM_USERNAMES: OptionSpec(
        'telegram_usernames', OptionKind.STRING_LIST, '',
        'Comma separated telegram chat ids or usernames to notify'),
    OptionId.SMTP_USERNAME: OptionSpec(
        'smtp_username', OptionKind.STRING, '',
        'SMTP username'),
    OptionId.SMTP_PASSWORD: OptionSpec(
        'smtp_password', OptionKind.STRING, '',
        'SMTP password'),
    OptionId.SMTP_SERVER: OptionSpec(
        'smtp_server', OptionKind.STRING, '',
        'SMTP server hostname'),
    OptionId.SMTP_PORT: OptionSpec(
        'smtp_port', OptionKind.INT, '0',
        'SMTP server port (STARTTLS)'),
    OptionId.EMAIL_FROM: OptionSpec(
        'email_from', OptionKind.STRING, '',
        'Sender address for notification mails'),
    OptionId.EMAIL_TO: OptionSpec(
        'email_to', OptionKind.STRING, '',
        'Recipient address for notification mails'),
    OptionId.ENABLE_PROMETHEUS: OptionSpec(
        'enable_prometheus', OptionKind.BOOL, 'false',
        'If true, start Prometheus metrics exporter HTTP server (default: false)'),
    OptionId.PROMETHEUS_PORT: OptionSpec(
        'prometheus_port', OptionKind.INT, '9810',
        'Port for Prometheus HTTP metrics server (default: 9810)'),
}

# Immutable keys that cannot be changed at runtime
IMMUTABLE_CONFIG_KEYS: FrozenSet[str] = frozenset({
    'enable_prometheus',
    'prometheus_port',
})

# Type mapping for config fields (for validation)
CONFIG_FIELD_TYPES: Dict[str, OptionKind] = {
    spec.field_name: spec.kind for spec in OPTION_SPECS.values()
}

# Range constraints for numeric fields
CONFIG_FIELD_RANGES: Dict[str, Tuple[int, int]] = {
    'expiring_htlcs': (0, 2016),
    'smtp_port': (0, 65535),
    'prometheus_port': (1, 65535),
}

# Fields whose values must never be echoed back over RPC
SECRET_CONFIG_KEYS: FrozenSet[str] = frozenset({
    'smtp_password',
    'telegram_token',
})

_TRUE_STRINGS = ('true', '1', 'yes', 'on')
_FALSE_STRINGS = ('false', '0', 'no', 'off')


def parse_option_value(kind: OptionKind, value: Any) -> Any:
    """
    Convert a raw option value into its typed form.

    lightningd hands options to plugins as strings (or native JSON values
    for typed options), so both are accepted.

    Raises:
        ValueError: if the value does not fit the option kind
    """
    if kind == OptionKind.BOOL:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"{value!r} is not a valid boolean")

    if kind == OptionKind.INT:
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not a valid integer")
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValueError(f"{value!r} is not a valid integer")

    if kind == OptionKind.STRING_LIST:
        if isinstance(value, (list, tuple)):
            items = [str(v) for v in value]
        else:
            items = str(value).split(',')
        return [item.strip() for item in items if item.strip()]

    if value is None:
        return ''
    return str(value)


@dataclass
class Config:
    """
    Configuration container for the vitality plugin.

    All values can be set via plugin options at startup and most of them
    changed later through `vitality-config set`. Every cycle works on a
    snapshot(), never on the live object.
    """

    # Feature switches
    amboss: bool = False
    expiring_htlcs: int = 0        # Blocks; 0 disables the expiring-HTLC rule
    watch_channels: bool = True
    watch_gossip: bool = False

    # Telegram
    telegram_token: str = ''
    telegram_usernames: List[str] = field(default_factory=list)

    # SMTP
    smtp_username: str = ''
    smtp_password: str = ''
    smtp_server: str = ''
    smtp_port: int = 0
    email_from: str = ''
    email_to: str = ''

    # Prometheus Metrics
    enable_prometheus: bool = False
    prometheus_port: int = 9810

    # Internal version tracking (not a user-configurable option)
    _version: int = field(default=0, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> 'Config':
        """
        Build a Config from the options dict pyln-client passes to init.

        Missing options keep their defaults. Raises ValueError on the first
        option that does not parse.
        """
        config = cls()
        for option_id, spec in OPTION_SPECS.items():
            raw = options.get(option_id.value)
            if raw is None:
                continue
            typed_value = parse_option_value(spec.kind, raw)
            config._check_range(spec.field_name, typed_value)
            setattr(config, spec.field_name, typed_value)
        return config

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> 'ConfigSnapshot':
        """
        Create an immutable snapshot for cycle execution.

        The lock is only held while copying; callers then release it
        before any RPC call or sleep.
        """
        with self._lock:
            return ConfigSnapshot.from_config(self)

    def _check_range(self, key: str, typed_value: Any) -> None:
        if key in CONFIG_FIELD_RANGES:
            min_val, max_val = CONFIG_FIELD_RANGES[key]
            if not (min_val <= typed_value <= max_val):
                raise ValueError(
                    f"Value {typed_value} out of range [{min_val}, {max_val}] for {key}")

    def update_runtime(self, key: str, value: Any) -> Dict[str, Any]:
        """
        Validate a new value for key and swap it in under the lock.

        Returns:
            Dict with status, old_value, new_value, version (or error)
        """
        if key in IMMUTABLE_CONFIG_KEYS:
            return {"error": f"Key '{key}' cannot be changed at runtime"}

        if key not in CONFIG_FIELD_TYPES:
            return {"error": f"Unknown config key: {key}"}

        kind = CONFIG_FIELD_TYPES[key]
        try:
            typed_value = parse_option_value(kind, value)
            self._check_range(key, typed_value)
        except ValueError as e:
            return {"error": f"Invalid value for {key} (expected {kind.value}): {e}"}

        with self._lock:
            old_value = getattr(self, key)
            setattr(self, key, typed_value)
            self._version += 1
            new_version = self._version

        if key in SECRET_CONFIG_KEYS:
            old_value = typed_value = "***"

        return {
            "status": "success",
            "key": key,
            "old_value": old_value,
            "new_value": typed_value,
            "version": new_version
        }


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable configuration snapshot for thread-safe cycle execution.

    Usage:
        def run(self):
            cfg = self.config.snapshot()  # Immutable for this cycle
            # All logic uses cfg, never self.config directly
    """
    amboss: bool
    expiring_htlcs: int
    watch_channels: bool
    watch_gossip: bool

    telegram_token: str
    telegram_usernames: Tuple[str, ...]

    smtp_username: str
    smtp_password: str
    smtp_server: str
    smtp_port: int
    email_from: str
    email_to: str

    enable_prometheus: bool
    prometheus_port: int

    # Derived: sinks with a complete set of credentials
    send_mail: bool = False
    send_telegram: bool = False

    version: int = 0

    @classmethod
    def from_config(cls, config: 'Config') -> 'ConfigSnapshot':
        """Create snapshot from mutable Config."""
        send_mail = bool(
            config.smtp_username
            and config.smtp_password
            and config.smtp_server
            and config.smtp_port > 0
            and config.email_from
            and config.email_to
        )
        send_telegram = bool(config.telegram_token and config.telegram_usernames)
        return cls(
            amboss=config.amboss,
            expiring_htlcs=config.expiring_htlcs,
            watch_channels=config.watch_channels,
            watch_gossip=config.watch_gossip,
            telegram_token=config.telegram_token,
            telegram_usernames=tuple(config.telegram_usernames),
            smtp_username=config.smtp_username,
            smtp_password=config.smtp_password,
            smtp_server=config.smtp_server,
            smtp_port=config.smtp_port,
            email_from=config.email_from,
            email_to=config.email_to,
            enable_prometheus=config.enable_prometheus,
            prometheus_port=config.prometheus_port,
            send_mail=send_mail,
            send_telegram=send_telegram,
            version=config._version,
        )

    @property
    def channel_watch_enabled(self) -> bool:
        """True if any of the channel-health rules is switched on."""
        return self.watch_channels or self.watch_gossip or self.expiring_htlcs > 0

    def public_dict(self) -> Dict[str, Any]:
        """Snapshot as a dict with secrets masked, for RPC output."""
        result: Dict[str, Any] = {}
        for spec in OPTION_SPECS.values():
            value = getattr(self, spec.field_name)
            if spec.field_name in SECRET_CONFIG_KEYS and value:
                value = "***"
            elif isinstance(value, tuple):
                value = list(value)
            result[spec.field_name] = value
        result["send_mail"] = self.send_mail
        result["send_telegram"] = self.send_telegram
        return result


def describe_sinks(cfg: ConfigSnapshot) -> List[str]:
    """Human readable lines about which notification sinks are active."""
    lines = []
    if cfg.send_mail:
        lines.append("Will try to send notifications via email")
    else:
        lines.append("Insufficient config for email notifications. Will not send emails")
    if cfg.send_telegram:
        lines.append(f"Will try to notify {', '.join(cfg.telegram_usernames)} via telegram")
    else:
        lines.append("Insufficient config for telegram notifications. Will not send telegrams.")
    return lines


def resolve_config_key(key: str) -> str:
    """Accept either a Config field name or a `vitality-*` option name."""
    try:
        return OPTION_SPECS[OptionId(key)].field_name
    except ValueError:
        return key.replace('-', '_')
