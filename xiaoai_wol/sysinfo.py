"""System resource report built from process statistics and /proc."""

from __future__ import annotations

import gc
import os
import threading

import psutil

_MEMORY_DETAILS = (
    ("MemTotal:", "　总内存"),
    ("MemFree:", "空闲内存"),
    ("MemAvailable:", "可用内存"),
    ("Buffers:", "　缓冲区"),
    ("Cached:", "　　缓存"),
)


def _to_int(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def cpu_usage(stat_text: str) -> str:
    """Describe overall CPU usage from the text of /proc/stat, or return ''."""
    lines = stat_text.splitlines()
    if not lines or not lines[0].startswith("cpu "):
        return ""
    fields = lines[0].split()
    if len(fields) < 8:
        return ""
    values = [_to_int(field) for field in fields[1:8]]
    total = sum(values)
    idle = values[3]
    if total <= 0:
        return ""
    return f"CPU使用率: {(total - idle) / total * 100:.2f}%\n"


def memory_info(meminfo_text: str) -> tuple[str, str]:
    """Return (usage line, detail lines) from the text of /proc/meminfo."""
    values: dict[str, float] = {}
    for line in meminfo_text.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        try:
            values[fields[0]] = float(fields[1]) / 1024.0
        except ValueError:
            continue

    usage = ""
    total = values.get("MemTotal:")
    available = values.get("MemAvailable:")
    if total is not None and available is not None and total > 0:
        usage = f"内存使用率: {(total - available) / total * 100:.2f}%\n"

    details = "".join(
        f"{label}: {values[key]:.2f} MB\n" for key, label in _MEMORY_DETAILS if key in values
    )
    return usage, details


def _read(path: str) -> str:
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            return handle.read()
    except OSError:
        return ""


def system_info() -> str:
    """Build the plain-text resource report shown on the panel."""
    memory = psutil.Process().memory_info()
    collections = sum(stats["collections"] for stats in gc.get_stats())
    parts = [
        "=== 系统资源信息 ===\n",
        f"CPU核心数: {os.cpu_count() or 0}\n",
        f"线程数: {threading.active_count()}\n",
        f"已分配内存: {memory.rss / 1024 / 1024:.2f} MB\n",
        f"系统内存: {memory.vms / 1024 / 1024:.2f} MB\n",
        f"GC次数: {collections}\n",
    ]

    cpu = cpu_usage(_read("/proc/stat"))
    usage, details = memory_info(_read("/proc/meminfo"))

    if cpu or usage:
        parts.append("\n=== 资源使用情况 ===\n")
        parts.append(cpu)
        parts.append(usage)
    if details:
        parts.append("\n=== 系统内存详情 ===\n")
        parts.append(details)
    return "".join(parts)