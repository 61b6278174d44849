"""Loading, defaulting and validating the service configuration."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

DEFAULT_XIAOAI_KEY = "xiaoaikey"
DEFAULT_MAC = "00-00-00-FF-FF-FF"
DEFAULT_PORT = 3030
DEFAULT_MQTT_CLIENT_ID = "bemfa_private"
DEFAULT_MQTT_SERVER = "bemfa.com"
DEFAULT_MQTT_PORT = 9501
DEFAULT_MQTT_TOPIC = "title"


class ConfigError(ValueError):
    """Raised when a configuration cannot be read, parsed or validated."""


def _take(data: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"字段 {key} 必须是整数")
    elif not isinstance(value, kind):
        raise ConfigError(f"字段 {key} 必须是{'字符串' if kind is str else '对象'}")
    return value


def _check_port(port: int, label: str) -> None:
    if port <= 0 or port > 65535:
        raise ConfigError(f"{label} 必须在 1-65535 范围内")


@dataclass
class MQTTConfig:
    """Connection settings for the MQTT broker."""

    client_id: str = ""
    server: str = ""
    port: int = 0
    topic: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> MQTTConfig:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("mqtt 必须是对象")
        return cls(
            client_id=_take(data, "client_id", str, ""),
            server=_take(data, "server", str, ""),
            port=_take(data, "port", int, 0),
            topic=_take(data, "topic", str, ""),
        )

    def apply_defaults(self) -> None:
        if not self.client_id:
            self.client_id = DEFAULT_MQTT_CLIENT_ID
        if not self.server:
            self.server = DEFAULT_MQTT_SERVER
        if self.port == 0:
            self.port = DEFAULT_MQTT_PORT
        if not self.topic:
            self.topic = DEFAULT_MQTT_TOPIC

    def validate(self) -> None:
        if not self.client_id:
            raise ConfigError("MQTT client_id 不能为空")
        if not self.server:
            raise ConfigError("MQTT server 不能为空")
        _check_port(self.port, "MQTT port")
        if not self.topic:
            raise ConfigError("MQTT topic 不能为空")


@dataclass
class Config:
    """Top-level service configuration."""

    xiaoai_key: str = ""
    mac: str = ""
    port: int = 0
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)

    @classmethod
    def from_dict(cls, data: Any) -> Config:
        """Build a configuration from decoded JSON; missing fields stay empty."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("配置必须是 JSON 对象")
        return cls(
            xiaoai_key=_take(data, "xiaoai_key", str, ""),
            mac=_take(data, "mac", str, ""),
            port=_take(data, "port", int, 0),
            mqtt=MQTTConfig.from_dict(data.get("mqtt")),
        )

    def apply_defaults(self) -> None:
        """Fill every empty field with its default value."""
        if not self.xiaoai_key:
            self.xiaoai_key = DEFAULT_XIAOAI_KEY
        if not self.mac:
            self.mac = DEFAULT_MAC
        if self.port == 0:
            self.port = DEFAULT_PORT
        self.mqtt.apply_defaults()

    def validate(self) -> None:
        """Raise ConfigError if any field is empty or out of range."""
        if not self.xiaoai_key:
            raise ConfigError("xiaoai_key 不能为空")
        if not self.mac:
            raise ConfigError("mac 地址不能为空")
        _check_port(self.port, "port")
        self.mqtt.validate()


def load_config(filename: str) -> Config:
    """Read, default and validate the JSON configuration in ``filename``."""
    try:
        with open(filename, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(f"无法打开配置文件 {filename}: {exc}") from exc

    try:
        config = Config.from_dict(json.loads(text))
    except (ValueError, ConfigError) as exc:
        raise ConfigError(f"配置文件解析错误: {exc}") from exc

    config.apply_defaults()
    try:
        config.validate()
    except ConfigError as exc:
        raise ConfigError(f"配置验证失败: {exc}") from exc
    return config