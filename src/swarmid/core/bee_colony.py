"""
蜂群检测器：人工蜂群觅食搜索。

每个蜜源（位置）描述一种观察角度：关注的地址 / 端口、时间窗口、灵敏度和权重。
适应度 = 权重 × 时间窗口内各启发式得分之和。

流程：
    雇佣蜂邻域搜索 → 按适应度计算选择概率 → 跟随蜂轮盘赌跟随 → 侦察蜂重置停滞蜜源
"""

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import BEE, default_configuration
from .detector import (
    SwarmDetector,
    commit_feedback,
    normal_anomaly,
    require_configuration,
    require_repository,
    spawn_rng,
    status_for,
)
from .features import (
    all_ports,
    destination_addresses,
    max_connections_per_target,
    max_pair_regularity,
    max_ports_per_source,
    observed_addresses,
    observed_ports,
    outbound_bytes,
    source_addresses,
    window_records,
)
from .heuristics import c2_band, ddos_band, exfiltration_band, port_scan_band, rank_kind
from .types import Anomaly, AnomalyType, DetectorConfiguration, TrafficRecord

logger = logging.getLogger(__name__)

MIN_WINDOW_SECONDS = 1.0
MAX_INITIAL_WINDOW_SECONDS = 300.0
WINDOW_STEP_SECONDS = 30.0

MAX_ACCEPTANCE_PROBABILITY = 0.5
MIN_ACCEPTANCE_PROBABILITY = 0.01
MAX_TRIAL_LIMIT = 10
MIN_TRIAL_LIMIT = 1


class BeeRole(str, Enum):
    EMPLOYED = "Employed"
    ONLOOKER = "Onlooker"
    SCOUT = "Scout"


@dataclass
class BeePosition:
    focus_address: str
    focus_port: int
    time_window: float
    sensitivity: float
    weight: float


@dataclass
class Bee:
    id: int
    role: BeeRole
    position: BeePosition
    fitness: float = 0.0
    trial_count: int = 0
    probability: float = 0.0


def forage_scores(records: Sequence[TrafficRecord], position: BeePosition) -> List[Tuple[AnomalyType, float]]:
    """
    时间窗口内四种启发式的原始得分（未乘权重）。

    顺序即并列时的优先级：端口扫描、DDoS、C2、数据外泄。
    """
    in_window = window_records(records, position.time_window)
    if not in_window:
        return []

    max_ports, _ = max_ports_per_source(in_window)
    max_connections, _ = max_connections_per_target(in_window)
    regularity, _ = max_pair_regularity(in_window)
    return [
        (AnomalyType.PORT_SCAN, port_scan_band(max_ports)),
        (AnomalyType.DDOS, ddos_band(max_connections)),
        (AnomalyType.COMMAND_AND_CONTROL, c2_band(regularity)),
        (AnomalyType.DATA_EXFILTRATION, exfiltration_band(outbound_bytes(in_window), position.sensitivity)),
    ]


def forage_fitness(records: Sequence[TrafficRecord], position: BeePosition, max_score: float) -> float:
    """
    权重 × 得分之和，封顶 max_score。

    封顶后不同窗口可能同为满分：规律的扫描在窄窗口里 C2 得分高于端口扫描，
    此时哪个蜜源先达到满分，结果就取哪个类型。
    """
    total = sum(score for _, score in forage_scores(records, position))
    return min(position.weight * total, max_score)


class BeeColonyDetector(SwarmDetector):
    """
    蜂群检测器。

    参数：
        repository    : 持久化协作方，反馈时调用其 update
        configuration : 初始参数，默认使用 "Default Bee Configuration"
        seed          : 随机种子；相同种子下每次调用派生的随机序列可复现
    """

    algorithm_name = "Bee Algorithm"

    def __init__(
        self,
        repository,
        configuration: Optional[DetectorConfiguration] = None,
        seed: Optional[int] = None,
    ):
        self._repository = require_repository(repository)
        self._config = configuration or default_configuration(BEE)
        self._seed_sequence = np.random.SeedSequence(seed)
        self._lock = threading.Lock()

    def configuration(self) -> DetectorConfiguration:
        with self._lock:
            return self._config

    def reconfigure(self, config: DetectorConfiguration) -> None:
        config = require_configuration(config)
        with self._lock:
            self._config = config

    def analyze(
        self,
        records: Sequence[TrafficRecord],
        config: DetectorConfiguration,
        rng: Optional[np.random.Generator] = None,
    ) -> Anomaly:
        records = list(records)
        if not records:
            return normal_anomaly(config, self.algorithm_name,
                                  "Normal traffic pattern detected by Bee Algorithm analysis")

        if rng is None:
            with self._lock:
                rng = spawn_rng(self._seed_sequence)

        forager = _Forager(records, config, rng)
        best = forager.search()
        return self._interpret(records, best, config)

    def apply_feedback(self, anomaly: Anomaly, is_actual_anomaly: bool) -> None:
        """
        确认：放宽接受概率、提高试探上限；误报：收紧二者。
        """
        with self._lock:
            config = self._config
            if is_actual_anomaly:
                adjusted = replace(
                    config,
                    acceptance_probability=min(config.acceptance_probability * 1.1, MAX_ACCEPTANCE_PROBABILITY),
                    max_trial_count=min(config.max_trial_count + 1, MAX_TRIAL_LIMIT),
                )
            else:
                adjusted = replace(
                    config,
                    acceptance_probability=max(config.acceptance_probability * 0.9, MIN_ACCEPTANCE_PROBABILITY),
                    max_trial_count=max(config.max_trial_count - 1, MIN_TRIAL_LIMIT),
                )
            commit_feedback(anomaly, is_actual_anomaly, self._repository)
            self._config = adjusted
            logger.info("Bee feedback applied: acceptance=%.3f trials=%d",
                        adjusted.acceptance_probability, adjusted.max_trial_count)

    def _interpret(self, records: List[TrafficRecord], best: Bee, config: DetectorConfiguration) -> Anomaly:
        kind = rank_kind(forage_scores(records, best.position))
        if kind is AnomalyType.NORMAL or best.fitness <= 0:
            return normal_anomaly(config, self.algorithm_name,
                                  "Normal traffic pattern detected by Bee Algorithm analysis")

        score = min(best.fitness, config.max_anomaly_score)
        position = best.position
        in_window = window_records(records, position.time_window)
        return Anomaly(
            type=kind,
            score=score,
            description=(
                f"{kind.value} detected by bee colony (focus {position.focus_address}:{position.focus_port}, "
                f"window {position.time_window:.0f}s, sensitivity {position.sensitivity:.2f}) "
                f"with score {score:.1f}"
            ),
            source_ips=source_addresses(in_window),
            destination_ips=destination_addresses(in_window),
            ports=observed_ports(in_window),
            status=status_for(score, config),
            configuration_used=config.name,
            algorithm=self.algorithm_name,
        )


class _Forager:
    """一次调用内的蜂群状态。"""

    def __init__(self, records: List[TrafficRecord], config: DetectorConfiguration, rng: np.random.Generator):
        self.records = records
        self.config = config
        self.rng = rng
        self.addresses = observed_addresses(records)
        self.ports = all_ports(records)
        self.trial_limit = config.max_iterations // 2
        self.colony: List[Bee] = []
        self.best: Optional[Bee] = None

    def search(self) -> Bee:
        self.colony = [self._new_bee(i) for i in range(self.config.number_of_employed_bees)]
        for bee in self.colony:
            self._remember(bee)

        for iteration in range(self.config.max_iterations):
            self._employed_phase()
            self._calculate_probabilities()
            self._onlooker_phase()
            self._scout_phase()

        logger.debug("Bee colony finished: best fitness %.1f", self.best.fitness if self.best else 0.0)
        if self.best is None:
            return Bee(0, BeeRole.EMPLOYED, self._random_position())
        return self.best

    def _employed_phase(self) -> None:
        for bee in self.colony:
            self._try_improve(bee)

    def _calculate_probabilities(self) -> None:
        total = sum(bee.fitness for bee in self.colony)
        if total <= 0:
            return
        for bee in self.colony:
            bee.probability = bee.fitness / total

    def _onlooker_phase(self) -> None:
        if not self.colony:
            return
        for _ in range(self.config.number_of_onlooker_bees):
            self._try_improve(self._select_bee())

    def _scout_phase(self) -> None:
        for bee in self.colony:
            if bee.trial_count > self.trial_limit:
                bee.role = BeeRole.SCOUT
                bee.position = self._random_position()
                bee.fitness = self._fitness(bee.position)
                bee.trial_count = 0
                self._remember(bee)
                bee.role = BeeRole.EMPLOYED

    def _select_bee(self) -> Bee:
        """轮盘赌选择；概率全为 0 时选第一只。"""
        if all(bee.probability <= 0 for bee in self.colony):
            return self.colony[0]
        r = self.rng.random()
        cumulative = 0.0
        for bee in self.colony:
            cumulative += bee.probability
            if r <= cumulative:
                return bee
        return self.colony[-1]

    def _try_improve(self, bee: Bee) -> None:
        candidate = self._neighbor(bee.position)
        fitness = self._fitness(candidate)
        if fitness > bee.fitness:
            bee.position = candidate
            bee.fitness = fitness
            bee.trial_count = 0
            self._remember(bee)
        else:
            bee.trial_count += 1

    def _neighbor(self, position: BeePosition) -> BeePosition:
        """只扰动一个字段。"""
        field_index = int(self.rng.integers(5))
        if field_index == 0:
            return replace(position, focus_address=self._random_address())
        if field_index == 1:
            return replace(position, focus_port=self._random_port())
        if field_index == 2:
            step = self.rng.uniform(-WINDOW_STEP_SECONDS, WINDOW_STEP_SECONDS)
            return replace(position, time_window=max(MIN_WINDOW_SECONDS, position.time_window + step))
        if field_index == 3:
            step = self.rng.uniform(-0.1, 0.1)
            return replace(position, sensitivity=float(np.clip(position.sensitivity + step, 0.1, 1.0)))
        step = self.rng.uniform(-0.1, 0.1)
        return replace(position, weight=float(np.clip(position.weight + step, 0.0, 1.0)))

    def _new_bee(self, bee_id: int) -> Bee:
        position = self._random_position()
        return Bee(bee_id, BeeRole.EMPLOYED, position, fitness=self._fitness(position))

    def _random_position(self) -> BeePosition:
        return BeePosition(
            focus_address=self._random_address(),
            focus_port=self._random_port(),
            time_window=float(self.rng.uniform(MIN_WINDOW_SECONDS, MAX_INITIAL_WINDOW_SECONDS)),
            sensitivity=float(self.rng.uniform(0.5, 1.0)),
            weight=float(self.rng.random()),
        )

    def _random_address(self) -> str:
        if not self.addresses:
            return ""
        return self.addresses[int(self.rng.integers(len(self.addresses)))]

    def _random_port(self) -> int:
        if not self.ports:
            return 0
        return self.ports[int(self.rng.integers(len(self.ports)))]

    def _fitness(self, position: BeePosition) -> float:
        return forage_fitness(self.records, position, self.config.max_anomaly_score)

    def _remember(self, bee: Bee) -> None:
        # 侦察阶段会覆盖当前蜜源，因此单独保存历史最优
        if self.best is None or bee.fitness > self.best.fitness:
            self.best = replace(bee, position=replace(bee.position))
