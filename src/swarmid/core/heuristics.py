"""
启发式打分：把 features 层的统计量映射为异常分数。

两类打分方式：
- 分段打分（蚁群、蜂群）：固定分段表 + 可选信息素加成
- 阈值比例打分（粒子群）：统计量与粒子自身阈值的比值

分段表中的常数是行为约定，测试中固定了这些阈值，不要随意调整。
"""

from typing import Iterable, Tuple

from .types import AnomalyType

MEBIBYTE = 1024 * 1024

# 检测顺序，同时决定并列时的优先级
KIND_ORDER = (
    AnomalyType.PORT_SCAN,
    AnomalyType.DDOS,
    AnomalyType.COMMAND_AND_CONTROL,
    AnomalyType.DATA_EXFILTRATION,
)


def port_scan_band(max_ports: int, bonus: float = 0.0) -> float:
    if max_ports > 50:
        return 85.0 + bonus
    if max_ports > 30:
        return 70.0 + bonus
    if max_ports > 20:
        return 55.0 + bonus
    if max_ports > 10:
        return 35.0 + bonus
    if max_ports > 5:
        return max(0.0, max_ports * 2.0 + bonus)
    return max(0.0, bonus)


def ddos_band(max_connections: int, bonus: float = 0.0) -> float:
    if max_connections > 100:
        return 90.0 + bonus
    if max_connections > 50:
        return 75.0 + bonus
    if max_connections > 25:
        return 60.0 + bonus
    if max_connections > 15:
        return 45.0 + bonus
    if max_connections > 10:
        return 30.0 + bonus
    if max_connections <= 5:
        return 0.0
    return max(0.0, (max_connections - 5) * 2.0 + bonus)


def c2_band(regularity: float, bonus: float = 0.0) -> float:
    if regularity > 80:
        return 70.0 + bonus
    if regularity > 60:
        return 50.0 + bonus
    if regularity > 40:
        return 30.0 + bonus
    return max(0.0, regularity * 0.5 + bonus)


def exfiltration_band(total_bytes: int, sensitivity: float) -> float:
    if total_bytes > 10 * MEBIBYTE:
        return 20.0 * sensitivity
    if total_bytes > 5 * MEBIBYTE:
        return 10.0 * sensitivity
    return 0.0


def threshold_ratio_score(
    observed: float,
    threshold: float,
    sensitivity: float,
    high: float,
    low: float = 0.0,
) -> float:
    """
    阈值比例打分。

    observed 超过 threshold 时按 high * sensitivity * observed / threshold 计分；
    超过 threshold 的 70% 时给固定的 low * sensitivity；否则为 0。
    """
    if threshold <= 0:
        return 0.0
    if observed > threshold:
        return high * sensitivity * (observed / threshold)
    if observed > threshold * 0.7:
        return low * sensitivity
    return 0.0


def rank_kind(scores: Iterable[Tuple[AnomalyType, float]]) -> AnomalyType:
    """
    取分数最高的异常类型；并列时取先出现者，全部为 0 时为 Normal。
    """
    best_kind, best_score = AnomalyType.NORMAL, 0.0
    for kind, score in scores:
        if score > best_score:
            best_kind, best_score = kind, score
    return best_kind
