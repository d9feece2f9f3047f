"""
检测引擎：按名称选择群智能算法的统一检测接口。

模块结构：
1. create_detector：按算法名构造检测器（ACO / BEE / PSO）
2. DetectionEngine：检测引擎（统一接口）
   - 切换算法并记录切换历史
   - 执行检测，非 Normal 的结果写入数据库（含低于阈值、已标记为误报的结果）
   - 把分析员反馈转交给当前检测器
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .ant_colony import AntColonyDetector
from .bee_colony import BeeColonyDetector
from .config import ACO, ALGORITHMS, BEE, PSO, default_configuration
from .detector import SwarmDetector, require_repository
from .particle_swarm import ParticleSwarmDetector
from .types import Anomaly, AnomalyType, DetectorConfiguration, InvalidArgumentError, TrafficRecord

logger = logging.getLogger(__name__)


def available_algorithms() -> List[str]:
    return list(ALGORITHMS)


def create_detector(
    algorithm: str,
    repository,
    configuration: Optional[DetectorConfiguration] = None,
    seed: Optional[int] = None,
) -> SwarmDetector:
    """
    按算法名构造检测器。

    参数：
        algorithm     : "ACO" / "BEE" / "PSO"（不区分大小写）
        repository    : 持久化协作方
        configuration : 初始参数，默认使用该算法的默认参数
        seed          : 随机种子（蚁群搜索是确定性的，忽略该参数）
    """
    key = (algorithm or "").upper()
    if key not in ALGORITHMS:
        raise InvalidArgumentError(f"Unknown algorithm: {algorithm}")

    configuration = configuration or default_configuration(key)
    if key == ACO:
        return AntColonyDetector(repository, configuration)
    if key == BEE:
        return BeeColonyDetector(repository, configuration, seed=seed)
    return ParticleSwarmDetector(repository, configuration, seed=seed)


class DetectionEngine:
    """
    检测引擎：统一的检测接口。

    特性：
    - 运行时切换算法
    - 非 Normal 的检测结果自动写入数据库
    - 统计检测与反馈情况
    """

    def __init__(
        self,
        repository,
        algorithm: str = PSO,
        configuration: Optional[DetectorConfiguration] = None,
        seed: Optional[int] = None,
    ):
        """
        参数：
            repository    : 异常记录仓库（需提供 save / update / get_by_id）
            algorithm     : 初始算法
            configuration : 初始参数
            seed          : 随机种子，传给支持随机搜索的检测器
        """
        self.repository = require_repository(repository)
        self.seed = seed
        self._lock = threading.Lock()
        self.detector = create_detector(algorithm, repository, configuration, seed)
        self.current_algorithm = algorithm.upper()
        self.switch_history: List[Dict[str, Any]] = []
        self.detection_history: List[Dict[str, Any]] = []
        self.feedback_history: List[Dict[str, Any]] = []

    def switch_algorithm(self, algorithm: str, configuration: Optional[DetectorConfiguration] = None) -> bool:
        """
        切换算法；未知算法名返回 False，当前检测器保持不变。
        """
        key = (algorithm or "").upper()
        if key not in ALGORITHMS:
            logger.warning("Unknown algorithm requested: %s", algorithm)
            return False

        detector = create_detector(key, self.repository, configuration, self.seed)
        with self._lock:
            previous = self.current_algorithm
            self.detector = detector
            self.current_algorithm = key
            self.switch_history.append({
                "from": previous,
                "to": key,
                "configuration": detector.configuration().name,
                "timestamp": datetime.now(),
            })
        logger.info("Switched detection algorithm %s -> %s", previous, key)
        return True

    def analyze(self, records: Sequence[TrafficRecord]) -> Anomaly:
        """
        对一批流量执行检测。

        返回检测器给出的唯一结果；类型不是 Normal 时写入数据库，
        低于阈值的结果以 FalsePositive 状态入库，之后仍可接受反馈。
        """
        with self._lock:
            detector = self.detector
            algorithm = self.current_algorithm

        anomaly = detector.detect(records)[0]
        saved = anomaly.type is not AnomalyType.NORMAL
        if saved:
            self.repository.save(anomaly)
            logger.info("Anomaly %s saved: %s score=%.1f", anomaly.id, anomaly.type.value, anomaly.score)

        with self._lock:
            self.detection_history.append({
                "anomaly_id": anomaly.id,
                "algorithm": algorithm,
                "type": anomaly.type.value,
                "score": anomaly.score,
                "record_count": len(records),
                "saved": saved,
                "timestamp": datetime.now(),
            })
        return anomaly

    def submit_feedback(self, anomaly_id: str, is_actual_anomaly: bool, note: Optional[str] = None) -> Optional[Anomaly]:
        """
        提交分析员反馈；未知 id 返回 None。
        """
        anomaly = self.repository.get_by_id(anomaly_id)
        if anomaly is None:
            logger.warning("Feedback for unknown anomaly %s", anomaly_id)
            return None

        if note is not None:
            anomaly.analyst_feedback = note
        with self._lock:
            detector = self.detector
        detector.apply_feedback(anomaly, is_actual_anomaly)

        with self._lock:
            self.feedback_history.append({
                "anomaly_id": anomaly_id,
                "is_actual_anomaly": is_actual_anomaly,
                "timestamp": datetime.now(),
            })
        return anomaly

    def get_performance(self) -> Dict[str, Any]:
        """
        获取检测统计。

        返回：
            Dict[str, Any]: 检测次数、入库次数、确认与误报反馈数
        """
        with self._lock:
            total_detections = len(self.detection_history)
            saved = sum(1 for h in self.detection_history if h["saved"])
            confirmed = sum(1 for h in self.feedback_history if h["is_actual_anomaly"])
            false_positives = len(self.feedback_history) - confirmed
            return {
                "current_algorithm": self.current_algorithm,
                "configuration": self.detector.configuration().name,
                "total_detections": total_detections,
                "saved_anomalies": saved,
                "confirmed": confirmed,
                "false_positives": false_positives,
                "detection_rate": saved / total_detections if total_detections > 0 else 0.0,
                "algorithm_switches": len(self.switch_history),
            }
