"""
Feature 层：批量流量统计。

- 输入：TrafficRecord 序列
- 操作：按源地址 / 目标 (地址, 端口) / 通信对 分组统计
- 输出：各启发式打分所需的统计量，以及异常记录里展示的地址、端口列表

所有函数对空序列、异常字段都返回 0 或空值，不抛异常。
"""

from datetime import timedelta
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .types import TrafficRecord

INTERNAL_PREFIXES = ("192.168.", "10.", "172.")

MAX_LISTED_ADDRESSES = 10
MAX_LISTED_PORTS = 20


def is_internal_address(ip) -> bool:
    """粗粒度内网判断：只看前缀，不做 CIDR 匹配。"""
    return isinstance(ip, str) and ip.startswith(INTERNAL_PREFIXES)


def window_records(records: Sequence[TrafficRecord], window_seconds: float) -> List[TrafficRecord]:
    """
    取 [批次起点, 批次起点 + window_seconds] 内的记录。
    """
    if not records:
        return []
    start = min(r.timestamp for r in records)
    end = start + timedelta(seconds=float(window_seconds))
    return [r for r in records if start <= r.timestamp <= end]


def max_ports_per_source(records: Iterable[TrafficRecord]) -> Tuple[int, str]:
    """
    端口扫描统计：单个源地址访问的不同目标端口数的最大值。

    返回：
        (端口数, 源地址)；并列时取最先出现的源地址。
    """
    ports_by_source: dict = {}
    for r in records:
        ports_by_source.setdefault(r.src_ip, set()).add(r.dst_port)

    best_count, best_source = 0, ""
    for source, ports in ports_by_source.items():
        if len(ports) > best_count:
            best_count, best_source = len(ports), source
    return best_count, best_source


def max_connections_per_target(records: Iterable[TrafficRecord]) -> Tuple[int, str]:
    """
    DDoS 统计：单个 (目标地址, 目标端口) 收到的记录数最大值。

    返回：
        (连接数, "dst:port")
    """
    counts: dict = {}
    for r in records:
        key = f"{r.dst_ip}:{r.dst_port}"
        counts[key] = counts.get(key, 0) + 1

    best_count, best_target = 0, ""
    for target, count in counts.items():
        if count > best_count:
            best_count, best_target = count, target
    return best_count, best_target


def interval_regularity(intervals: Sequence[float]) -> float:
    """
    间隔规律度：100 / (1 + 方差 / 均值²)，均值不大于 0 时为 0。
    """
    if len(intervals) == 0:
        return 0.0
    values = np.asarray(intervals, dtype=float)
    mean = float(values.mean())
    if mean <= 0:
        return 0.0
    variance = float(values.var())
    return 100.0 / (1.0 + variance / (mean * mean))


def max_pair_regularity(records: Iterable[TrafficRecord], min_events: int = 3) -> Tuple[float, str]:
    """
    C2 信标统计：按 (源, 目标) 通信对分组，计算按时间排序后的间隔规律度。

    返回：
        (最大规律度, "src->dst")；没有任何通信对满足 min_events 时返回 (0.0, "")。
    """
    times_by_pair: dict = {}
    for r in records:
        times_by_pair.setdefault((r.src_ip, r.dst_ip), []).append(r.timestamp)

    best_regularity, best_pair = 0.0, ""
    for (src, dst), times in times_by_pair.items():
        if len(times) < min_events:
            continue
        times = sorted(times)
        intervals = [(b - a).total_seconds() for a, b in zip(times, times[1:])]
        regularity = interval_regularity(intervals)
        if regularity > best_regularity:
            best_regularity, best_pair = regularity, f"{src}->{dst}"
    return best_regularity, best_pair


def outbound_bytes(records: Iterable[TrafficRecord]) -> int:
    """数据外泄统计：内网 → 外网记录的 packet_size 之和。"""
    total = 0
    for r in records:
        if is_internal_address(r.src_ip) and not is_internal_address(r.dst_ip):
            total += int(r.packet_size or 0)
    return total


def _distinct(values: Iterable, limit: int) -> list:
    seen: list = []
    for v in values:
        if v not in seen:
            seen.append(v)
            if len(seen) >= limit:
                break
    return seen


def source_addresses(records: Iterable[TrafficRecord], limit: int = MAX_LISTED_ADDRESSES) -> List[str]:
    return _distinct((r.src_ip for r in records), limit)


def destination_addresses(records: Iterable[TrafficRecord], limit: int = MAX_LISTED_ADDRESSES) -> List[str]:
    return _distinct((r.dst_ip for r in records), limit)


def observed_ports(records: Iterable[TrafficRecord], limit: int = MAX_LISTED_PORTS) -> List[int]:
    """源端口与目标端口按出现顺序去重。"""
    return _distinct((p for r in records for p in (r.src_port, r.dst_port)), limit)


def observed_addresses(records: Iterable[TrafficRecord]) -> List[str]:
    """所有出现过的源、目标地址（去重，不限数量）。"""
    return list(dict.fromkeys(ip for r in records for ip in (r.src_ip, r.dst_ip)))


def observed_pairs(records: Iterable[TrafficRecord]) -> List[str]:
    """所有出现过的有序通信对 "src->dst"（去重）。"""
    return list(dict.fromkeys(f"{r.src_ip}->{r.dst_ip}" for r in records))


def all_ports(records: Iterable[TrafficRecord]) -> List[int]:
    """所有出现过的端口（去重，不限数量）。"""
    return list(dict.fromkeys(p for r in records for p in (r.src_port, r.dst_port)))
