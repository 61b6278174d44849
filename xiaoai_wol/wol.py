"""Wake-on-LAN magic packets and address helpers."""

from __future__ import annotations

import ipaddress
import socket
import string
from collections.abc import Iterator

import psutil

WOL_PORT = 9

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)
_HEX_DIGITS = frozenset(string.hexdigits)


class InvalidMacError(ValueError):
    """Raised when a MAC address cannot be decoded."""


def _unmap(ip: ipaddress.IPv4Address | ipaddress.IPv6Address):
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _in_private_range(ip) -> bool:
    ip = _unmap(ip)
    return any(ip in network for network in _PRIVATE_NETWORKS)


def is_private_ip(addr: str) -> bool:
    """Tell whether a ``host:port`` remote address is private or loopback."""
    host = addr.rpartition(":")[0] if ":" in addr else addr
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.scope_id:
        return False
    return _in_private_range(ip) or _unmap(ip).is_loopback


def parse_mac(mac: str) -> bytes:
    """Decode a MAC address written with optional ':' or '-' separators."""
    cleaned = mac.replace(":", "").replace("-", "")
    if len(cleaned) != 12:
        raise InvalidMacError("MAC地址格式无效。它应该是12个十六进制数字。")
    if not set(cleaned) <= _HEX_DIGITS:
        raise InvalidMacError(f"MAC地址解码错误: invalid hex digits in {cleaned!r}")
    return bytes.fromhex(cleaned)


def magic_packet(mac: str) -> bytes:
    """Build the 102-byte magic packet for ``mac``."""
    return b"\xff" * 6 + parse_mac(mac) * 16


def broadcast_address(ip, netmask) -> str:
    """Return the IPv4 broadcast address of ``ip`` within ``netmask``."""
    address = int(ipaddress.IPv4Address(ip))
    mask = int(ipaddress.IPv4Address(netmask))
    return str(ipaddress.IPv4Address(address | (~mask & 0xFFFFFFFF)))


def _interface_usable(stats) -> bool:
    if stats is None:
        return False
    flags = {flag for flag in (getattr(stats, "flags", "") or "").split(",") if flag}
    if not flags:
        return bool(stats.isup)
    return {"up", "broadcast", "running"} <= flags and "loopback" not in flags


def _broadcast_targets() -> Iterator[tuple[str, str, str]]:
    stats = psutil.net_if_stats()
    for name, addresses in psutil.net_if_addrs().items():
        if not _interface_usable(stats.get(name)):
            continue
        for address in addresses:
            if address.family != socket.AF_INET or not address.netmask:
                continue
            try:
                ip = ipaddress.IPv4Address(address.address)
                broadcast = broadcast_address(ip, address.netmask)
            except ValueError:
                continue
            if not _in_private_range(ip):
                continue
            yield name, str(ip), broadcast


def _send(packet: bytes, source: str, target: str) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind((source, 0))
        sock.sendto(packet, (target, WOL_PORT))


def wake_on_lan(mac_addr: str) -> str:
    """Broadcast a magic packet on every private LAN and describe what was sent."""
    try:
        packet = magic_packet(mac_addr)
    except InvalidMacError as exc:
        return f"{exc}\n"

    try:
        targets = list(_broadcast_targets())
    except (OSError, psutil.Error) as exc:
        return f"获取网络接口信息失败: {exc}\n"

    lines = [f"正在唤醒的电脑 MAC 地址: {mac_addr}\n"]
    sent: set[str] = set()
    for name, source, broadcast in targets:
        if broadcast in sent:
            continue
        try:
            _send(packet, source, broadcast)
        except OSError:
            continue
        lines.append(f"魔术包已发送到 {broadcast} (via {name}, from {source})\n")
        sent.add(broadcast)

    if not sent:
        lines.append("没有找到有效的内网接口来发送唤醒包。")
    return "".join(lines)