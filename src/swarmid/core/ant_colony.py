"""
蚁群检测器：信息素路径搜索。

- 每次调用派出多只蚂蚁对整批流量做三种启发式打分
- 蚂蚁走过的路径按得分沉积信息素，每轮结束后统一挥发
- 信息素表跨调用保留，由检测器实例独占，所有读写都在锁内完成
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import ACO, default_configuration
from .detector import (
    SwarmDetector,
    commit_feedback,
    normal_anomaly,
    require_configuration,
    require_repository,
    status_for,
)
from .features import (
    destination_addresses,
    max_connections_per_target,
    max_pair_regularity,
    max_ports_per_source,
    observed_addresses,
    observed_pairs,
    observed_ports,
    source_addresses,
)
from .heuristics import c2_band, ddos_band, port_scan_band
from .types import Anomaly, AnomalyType, DetectorConfiguration, TrafficRecord

logger = logging.getLogger(__name__)

INITIAL_PHEROMONE = 0.1
MIN_PHEROMONE = 0.01
MIN_KIND_SCORE = 10.0  # 启发式得分低于该值不认定异常类型


@dataclass
class Ant:
    id: int
    explored_paths: List[str] = field(default_factory=list)

    def explore_path(self, path: str) -> None:
        self.explored_paths.append(path)


class AntColonyDetector(SwarmDetector):
    """
    蚁群检测器。

    特性：
    - 信息素表跨调用保留，高分路径被强化、长期无发现的路径逐渐挥发
    - 分析员反馈直接放大 / 削弱相关地址的信息素
    - 修改挥发率或蚂蚁数量会清空信息素表
    """

    algorithm_name = "Ant Colony Optimization"

    def __init__(self, repository, configuration: Optional[DetectorConfiguration] = None):
        self._repository = require_repository(repository)
        self._config = configuration or default_configuration(ACO)
        self._pheromone_trails: Dict[str, float] = {}
        self._lock = threading.RLock()

    @property
    def pheromone_trails(self) -> Dict[str, float]:
        """信息素表的快照。"""
        with self._lock:
            return dict(self._pheromone_trails)

    def configuration(self) -> DetectorConfiguration:
        with self._lock:
            return self._config

    def reconfigure(self, config: DetectorConfiguration) -> None:
        config = require_configuration(config)
        with self._lock:
            previous = self._config
            if (
                config.pheromone_evaporation_rate != previous.pheromone_evaporation_rate
                or config.number_of_ants != previous.number_of_ants
            ):
                self._pheromone_trails.clear()
                logger.info("Pheromone trails reset after reconfiguration to %s", config.name)
            self._config = config

    def detect(
        self,
        records: Sequence[TrafficRecord],
        rng: Optional[np.random.Generator] = None,
    ) -> List[Anomaly]:
        with self._lock:
            return [self.analyze(records, self._config, rng)]

    def analyze(
        self,
        records: Sequence[TrafficRecord],
        config: DetectorConfiguration,
        rng: Optional[np.random.Generator] = None,
    ) -> Anomaly:
        """
        执行蚁群搜索。

        蚂蚁对整批流量做确定性打分，不使用 rng。
        """
        records = list(records)
        if not records:
            return normal_anomaly(config, self.algorithm_name,
                                  "Normal traffic pattern detected by ACO analysis")

        with self._lock:
            self._initialize_pheromone_trails(records)
            return self._run_colony(records, config)

    def apply_feedback(self, anomaly: Anomaly, is_actual_anomaly: bool) -> None:
        multiplier = 1.5 if is_actual_anomaly else 0.5
        with self._lock:
            commit_feedback(anomaly, is_actual_anomaly, self._repository)
            for ip in list(anomaly.source_ips) + list(anomaly.destination_ips):
                if ip in self._pheromone_trails:
                    self._pheromone_trails[ip] *= multiplier

    def _run_colony(self, records: List[TrafficRecord], config: DetectorConfiguration) -> Anomaly:
        best_score = 0.0
        best_kind = AnomalyType.NORMAL
        best_description = ""

        for iteration in range(config.max_iterations):
            ants = [Ant(i) for i in range(config.number_of_ants)]
            for ant in ants:
                score, kind, description = self._explore_with_ant(ant, records, config)
                if score > best_score:
                    best_score, best_kind, best_description = score, kind, description
                self._deposit_pheromone(ant, score, config)

            self._evaporate_pheromone(config.pheromone_evaporation_rate)

        logger.debug("ACO finished: best score %.1f (%s), %d trails",
                     best_score, best_kind.value, len(self._pheromone_trails))

        if best_kind is AnomalyType.NORMAL:
            return normal_anomaly(config, self.algorithm_name,
                                  "Normal traffic pattern detected by ACO analysis")

        return Anomaly(
            type=best_kind,
            score=best_score,
            description=best_description,
            source_ips=source_addresses(records),
            destination_ips=destination_addresses(records),
            ports=observed_ports(records),
            status=status_for(best_score, config),
            configuration_used=config.name,
            algorithm=self.algorithm_name,
        )

    def _explore_with_ant(
        self,
        ant: Ant,
        records: List[TrafficRecord],
        config: DetectorConfiguration,
    ) -> Tuple[float, AnomalyType, str]:
        score = 0.0
        kind = AnomalyType.NORMAL
        description = "Normal traffic pattern detected"

        port_scan_score = self._port_scan_score(records, ant)
        if port_scan_score > score and port_scan_score >= MIN_KIND_SCORE:
            score, kind = port_scan_score, AnomalyType.PORT_SCAN
            description = f"Port scan detected by ant {ant.id} with score {port_scan_score:.1f}"

        ddos_score = self._ddos_score(records, ant)
        if ddos_score > score and ddos_score >= MIN_KIND_SCORE:
            score, kind = ddos_score, AnomalyType.DDOS
            description = f"DDoS attack detected by ant {ant.id} with score {ddos_score:.1f}"

        c2_score = self._c2_score(records, ant)
        if c2_score > score and c2_score >= MIN_KIND_SCORE:
            score, kind = c2_score, AnomalyType.COMMAND_AND_CONTROL
            description = (f"Command & Control communication detected by ant {ant.id} "
                           f"with score {c2_score:.1f}")

        return min(score, config.max_anomaly_score), kind, description

    def _port_scan_score(self, records: List[TrafficRecord], ant: Ant) -> float:
        max_ports, source = max_ports_per_source(records)
        bonus = self._pheromone_strength(source) * 10
        ant.explore_path(f"portscan_{source}")
        return port_scan_band(max_ports, bonus)

    def _ddos_score(self, records: List[TrafficRecord], ant: Ant) -> float:
        max_connections, target = max_connections_per_target(records)
        bonus = self._pheromone_strength(target) * 10
        ant.explore_path(f"ddos_{target}")
        return ddos_band(max_connections, bonus)

    def _c2_score(self, records: List[TrafficRecord], ant: Ant) -> float:
        if len(records) < 3:
            return 0.0
        regularity, pair = max_pair_regularity(records)
        bonus = self._pheromone_strength(pair) * 5
        if pair:
            ant.explore_path(f"c2_{pair}")
        return c2_band(regularity, bonus)

    def _initialize_pheromone_trails(self, records: List[TrafficRecord]) -> None:
        for key in observed_addresses(records) + observed_pairs(records):
            self._pheromone_trails.setdefault(key, INITIAL_PHEROMONE)

    def _deposit_pheromone(self, ant: Ant, score: float, config: DetectorConfiguration) -> None:
        if config.max_anomaly_score <= 0:
            return
        deposit = (score / config.max_anomaly_score) * config.q
        for path in ant.explored_paths:
            self._pheromone_trails[path] = self._pheromone_trails.get(path, 0.0) + deposit

    def _evaporate_pheromone(self, evaporation_rate: float) -> None:
        for key in list(self._pheromone_trails):
            self._pheromone_trails[key] *= (1.0 - evaporation_rate)
            # 清除过弱的路径
            if self._pheromone_trails[key] < MIN_PHEROMONE:
                del self._pheromone_trails[key]

    def _pheromone_strength(self, path: str) -> float:
        return self._pheromone_trails.get(path, 0.0)
