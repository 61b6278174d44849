"""Wake-on-LAN bridge for Xiaoai voice skills, MQTT and a LAN web panel."""

__version__ = "0.1.0"

__all__ = ["config", "wol", "sysinfo", "mqtt", "skill", "server"]