"""
检测器契约：三种群智能检测器共同实现的接口。

- 输入：TrafficRecord 序列
- 输出：恰好包含一个 Anomaly 的列表

三个实现各自持有自己的状态，基类不保存任何状态，
这里只放接口定义和三者共用的无状态辅助函数。
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from .types import (
    Anomaly,
    AnomalyStatus,
    AnomalyType,
    DetectorConfiguration,
    InvalidArgumentError,
    TrafficRecord,
)

logger = logging.getLogger(__name__)


class SwarmDetector(ABC):
    """
    群智能检测器接口。
    """

    algorithm_name: str = ""

    def detect(
        self,
        records: Sequence[TrafficRecord],
        rng: Optional[np.random.Generator] = None,
    ) -> List[Anomaly]:
        """
        使用当前参数对一批流量执行一次完整搜索，返回只含一个 Anomaly 的列表。

        rng 为空时由检测器为本次调用派生一个独立的随机数生成器。
        """
        return [self.analyze(records, self.configuration(), rng)]

    @abstractmethod
    def analyze(
        self,
        records: Sequence[TrafficRecord],
        config: DetectorConfiguration,
        rng: Optional[np.random.Generator] = None,
    ) -> Anomaly:
        """使用指定参数执行一次搜索，返回最佳候选对应的 Anomaly。"""

    @abstractmethod
    def apply_feedback(self, anomaly: Anomaly, is_actual_anomaly: bool) -> None:
        """根据分析员确认 / 否认调整算法状态，并交给持久化层更新。"""

    @abstractmethod
    def configuration(self) -> DetectorConfiguration:
        """当前生效的参数。"""

    @abstractmethod
    def reconfigure(self, config: DetectorConfiguration) -> None:
        """替换当前参数；config 为 None 时抛出 InvalidArgumentError。"""


def require_repository(repository):
    if repository is None:
        raise InvalidArgumentError("repository is required")
    return repository


def require_configuration(config: Optional[DetectorConfiguration]) -> DetectorConfiguration:
    if config is None:
        raise InvalidArgumentError("configuration is required")
    return config


def spawn_rng(seed_sequence: np.random.SeedSequence) -> np.random.Generator:
    """每次调用派生一个独立的生成器，避免多次搜索轨迹相关。"""
    return np.random.default_rng(seed_sequence.spawn(1)[0])


def status_for(score: float, config: DetectorConfiguration) -> AnomalyStatus:
    return AnomalyStatus.NEW if score >= config.anomaly_threshold else AnomalyStatus.FALSE_POSITIVE


def normal_anomaly(config: DetectorConfiguration, algorithm: str, description: str) -> Anomaly:
    """空批次（或未发现异常）时返回的占位结果。"""
    return Anomaly(
        type=AnomalyType.NORMAL,
        score=0.0,
        description=description,
        status=AnomalyStatus.FALSE_POSITIVE,
        algorithm=algorithm,
        configuration_used=config.name,
    )


def commit_feedback(anomaly: Anomaly, is_actual_anomaly: bool, repository) -> None:
    """
    设置反馈状态并调用持久化层 update。

    update 失败时恢复原状态并继续抛出，调用方据此放弃内部调整。
    """
    previous = anomaly.status
    anomaly.status = AnomalyStatus.CONFIRMED if is_actual_anomaly else AnomalyStatus.FALSE_POSITIVE
    try:
        repository.update(anomaly)
    except Exception:
        anomaly.status = previous
        logger.exception("Failed to persist feedback for anomaly %s", anomaly.id)
        raise
