"""Server and command-line configuration."""

import json
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, get_args, get_origin


class ConfigError(Exception):
    """Raised when configuration cannot be read or parsed."""


@dataclass
class DBConfig:
    host: str = ""
    read_only_hosts: list[str] = field(default_factory=list)
    port: int = field(default=0, metadata={"unsigned": True})
    user: str = ""
    password: str = ""
    db_name: str = ""
    tz: str = ""


@dataclass
class TwitterPlatformConfig:
    access_token: str = ""
    access_token_secret: str = ""
    consumer_key: str = ""
    consumer_secret: str = ""


@dataclass
class TelegramPlatformConfig:
    api_id: int = 0
    api_hash: str = ""
    bot_token: str = ""
    public_channel_name: str = ""


@dataclass
class SlackPlatformConfig:
    api_token: str = ""
    public_channel_id: str = ""


@dataclass
class EthereumPlatformConfig:
    rpc_server: str = ""


@dataclass
class DiscordPlatformConfig:
    bot_token: str = ""
    proof_server_channel_id: str = ""


@dataclass
class PlatformConfig:
    twitter: TwitterPlatformConfig = field(default_factory=TwitterPlatformConfig)
    telegram: TelegramPlatformConfig = field(default_factory=TelegramPlatformConfig)
    ethereum: EthereumPlatformConfig = field(default_factory=EthereumPlatformConfig)
    discord: DiscordPlatformConfig = field(default_factory=DiscordPlatformConfig)
    slack: SlackPlatformConfig = field(default_factory=SlackPlatformConfig)


@dataclass
class ArweaveConfig:
    jwk: str = ""
    client_url: str = ""


@dataclass
class SqsConfig:
    queue_name: str = ""


@dataclass
class Config:
    db: DBConfig = field(default_factory=DBConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    arweave: ArweaveConfig = field(default_factory=ArweaveConfig)
    sqs: SqsConfig = field(default_factory=SqsConfig)

    def database_dsn(self, host: str) -> str:
        db = self.db
        return (
            f"host={host} port={db.port} user={db.user} password={db.password} "
            f"dbname={db.db_name} TimeZone={db.tz} sslmode=disable"
        )


@dataclass
class CliConfig:
    """Settings of the ``[server]`` table in ``cli.toml``."""

    hostname: str = ""
    generate_path: str = ""
    upload_path: str = ""
    query_path: str = ""


def _convert(tp: Any, value: Any, where: str) -> Any:
    if is_dataclass(tp):
        return _load(tp, value, where)
    if tp is str:
        if not isinstance(value, str):
            raise ConfigError(f"{where}: expected a string")
        return value
    if tp is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(f"{where}: expected an integer")
        return value
    if get_origin(tp) is list:
        if not isinstance(value, list):
            raise ConfigError(f"{where}: expected a list")
        (item_type,) = get_args(tp)
        return [_convert(item_type, item, f"{where}[{i}]") for i, item in enumerate(value)]
    raise ConfigError(f"{where}: unsupported type")  # pragma: no cover


def _load(cls: type, data: Any, where: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected an object")
    lowered = {str(k).lower(): v for k, v in data.items()}
    kwargs = {}
    for f in fields(cls):
        value = lowered.get(f.name.lower())
        if value is None:
            continue
        path = f"{where}.{f.name}" if where else f.name
        converted = _convert(f.type, value, path)
        if f.metadata.get("unsigned") and converted < 0:
            raise ConfigError(f"{path}: must not be negative")
        kwargs[f.name] = converted
    return cls(**kwargs)


def parse_config(data: str | bytes | dict[str, Any]) -> Config:
    """Build a Config from JSON text or a decoded mapping."""
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"error parsing config: {exc}") from exc
    return _load(Config, data, "")


def load_config(path: str | Path) -> Config:
    """Read and parse a JSON configuration file."""
    try:
        content = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigError(f"error opening config file: {exc}") from exc
    return parse_config(content)


def load_cli_config(directory: str | Path = "./config") -> CliConfig:
    """Read ``cli.toml`` from ``directory``."""
    path = Path(directory) / "cli.toml"
    try:
        with path.open("rb") as handle:
            document = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"fatal error config file: cli err:{exc}") from exc
    server = document.get("server", {})
    if not isinstance(server, dict):
        raise ConfigError("server: expected a table")
    return CliConfig(
        **{f.name: str(server.get(f.name, "")) for f in fields(CliConfig)}
    )