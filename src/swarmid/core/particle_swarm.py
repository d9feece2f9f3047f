"""
粒子群检测器：优化检测阈值。

粒子位置是一组检测阈值：
    [端口扫描阈值, DDoS 阈值, C2 规律度阈值, 外泄 MB 阈值, 时间窗口(秒), 灵敏度]

适应度 = 时间窗口内各统计量相对阈值的超出程度之和，
搜索结束后按全局最优位置解释异常类型。
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import PSO, default_configuration
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
    destination_addresses,
    max_connections_per_target,
    max_pair_regularity,
    max_ports_per_source,
    observed_ports,
    outbound_bytes,
    source_addresses,
    window_records,
)
from .heuristics import MEBIBYTE, rank_kind, threshold_ratio_score
from .types import Anomaly, AnomalyType, DetectorConfiguration, TrafficRecord

logger = logging.getLogger(__name__)

PORT_SCAN, DDOS, C2, EXFILTRATION, TIME_WINDOW, SENSITIVITY = range(6)
DIMENSIONS = 6

POSITION_LOWER = np.array([5.0, 10.0, 30.0, 1.0, 10.0, 0.1])
POSITION_UPPER = np.array([100.0, 200.0, 100.0, 50.0, 600.0, 1.0])

DEFAULT_GLOBAL_BEST = np.array([25.0, 50.0, 75.0, 10.0, 60.0, 0.8])

MAX_INERTIA_WEIGHT = 0.95
MAX_ACCELERATION = 3.0


@dataclass
class Particle:
    id: int
    position: np.ndarray
    velocity: np.ndarray
    best_position: np.ndarray
    fitness: float = 0.0
    best_fitness: float = 0.0


def threshold_scores(records: Sequence[TrafficRecord], position: np.ndarray) -> List[Tuple[AnomalyType, float]]:
    """
    时间窗口内四种统计量相对阈值的得分，顺序即并列优先级。
    """
    in_window = window_records(records, float(position[TIME_WINDOW]))
    if not in_window:
        return []

    sensitivity = float(position[SENSITIVITY])
    max_ports, _ = max_ports_per_source(in_window)
    max_connections, _ = max_connections_per_target(in_window)
    regularity, _ = max_pair_regularity(in_window)
    outbound_mb = outbound_bytes(in_window) / MEBIBYTE

    return [
        (AnomalyType.PORT_SCAN,
         threshold_ratio_score(max_ports, position[PORT_SCAN], sensitivity, high=30.0, low=15.0)),
        (AnomalyType.DDOS,
         threshold_ratio_score(max_connections, position[DDOS], sensitivity, high=35.0, low=20.0)),
        (AnomalyType.COMMAND_AND_CONTROL,
         threshold_ratio_score(regularity, position[C2], sensitivity, high=25.0)),
        (AnomalyType.DATA_EXFILTRATION,
         threshold_ratio_score(outbound_mb, position[EXFILTRATION], sensitivity, high=20.0, low=10.0)),
    ]


def threshold_fitness(records: Sequence[TrafficRecord], position: np.ndarray, max_score: float) -> float:
    total = sum(float(score) for _, score in threshold_scores(records, position))
    return min(total, max_score)


def velocity_limits(max_velocity: float) -> np.ndarray:
    """各维速度上限；灵敏度维度取 0.1 倍。"""
    limits = np.full(DIMENSIONS, float(max_velocity))
    limits[SENSITIVITY] = 0.1 * float(max_velocity)
    return limits


def inertia_at(config: DetectorConfiguration, iteration: int) -> float:
    """惯性权重从 inertia_weight 线性递减到 min_inertia_weight。"""
    return config.inertia_weight - (
        (config.inertia_weight - config.min_inertia_weight) * iteration / config.max_iterations
    )


class ParticleSwarmDetector(SwarmDetector):
    """
    粒子群检测器。

    反馈调整的是惯性权重与学习因子：
    - 确认：增大惯性和个体学习因子，扩大探索
    - 误报：减小惯性、增大社会学习因子，向全局最优收敛
    """

    algorithm_name = "Particle Swarm Optimization"

    def __init__(
        self,
        repository,
        configuration: Optional[DetectorConfiguration] = None,
        seed: Optional[int] = None,
    ):
        self._repository = require_repository(repository)
        self._config = configuration or default_configuration(PSO)
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
                                  "Normal traffic pattern detected by PSO analysis")

        if rng is None:
            with self._lock:
                rng = spawn_rng(self._seed_sequence)

        best_position, best_fitness = self._optimize(records, config, rng)
        return self._interpret(records, best_position, best_fitness, config)

    def apply_feedback(self, anomaly: Anomaly, is_actual_anomaly: bool) -> None:
        with self._lock:
            config = self._config
            if is_actual_anomaly:
                adjusted = replace(
                    config,
                    inertia_weight=min(config.inertia_weight * 1.05, MAX_INERTIA_WEIGHT),
                    cognitive_component=min(config.cognitive_component * 1.02, MAX_ACCELERATION),
                )
            else:
                adjusted = replace(
                    config,
                    inertia_weight=max(config.inertia_weight * 0.95, config.min_inertia_weight),
                    social_component=min(config.social_component * 1.02, MAX_ACCELERATION),
                )
            commit_feedback(anomaly, is_actual_anomaly, self._repository)
            self._config = adjusted
            logger.info("PSO feedback applied: inertia=%.3f c1=%.3f c2=%.3f",
                        adjusted.inertia_weight, adjusted.cognitive_component, adjusted.social_component)

    def _optimize(
        self,
        records: List[TrafficRecord],
        config: DetectorConfiguration,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, float]:
        particles = [self._new_particle(i, config, rng) for i in range(config.number_of_particles)]
        global_best = DEFAULT_GLOBAL_BEST.copy()
        global_best_fitness = 0.0

        velocity_limit = velocity_limits(config.max_velocity)

        for iteration in range(config.max_iterations):
            for particle in particles:
                particle.fitness = threshold_fitness(records, particle.position, config.max_anomaly_score)
                if particle.fitness > particle.best_fitness:
                    particle.best_fitness = particle.fitness
                    particle.best_position = particle.position.copy()
                if particle.fitness > global_best_fitness:
                    global_best_fitness = particle.fitness
                    global_best = particle.position.copy()

            inertia = inertia_at(config, iteration)
            for particle in particles:
                self._move(particle, global_best, inertia, config, velocity_limit, rng)

        logger.debug("PSO finished: global best fitness %.1f at %s", global_best_fitness, global_best)
        return global_best, global_best_fitness

    @staticmethod
    def _move(
        particle: Particle,
        global_best: np.ndarray,
        inertia: float,
        config: DetectorConfiguration,
        velocity_limit: np.ndarray,
        rng: np.random.Generator,
    ) -> None:
        r1, r2 = rng.random(2)
        velocity = (
            inertia * particle.velocity
            + config.cognitive_component * r1 * (particle.best_position - particle.position)
            + config.social_component * r2 * (global_best - particle.position)
        )
        particle.velocity = np.clip(velocity, -velocity_limit, velocity_limit)
        particle.position = np.clip(particle.position + particle.velocity, POSITION_LOWER, POSITION_UPPER)

    @staticmethod
    def _new_particle(particle_id: int, config: DetectorConfiguration, rng: np.random.Generator) -> Particle:
        position = np.array([
            rng.uniform(10, 60),
            rng.uniform(20, 100),
            rng.uniform(50, 100),
            rng.uniform(5, 25),
            float(rng.integers(30, 301)),
            rng.uniform(0.5, 1.0),
        ])
        velocity = (rng.random(DIMENSIONS) - 0.5) * config.max_velocity
        velocity[SENSITIVITY] *= 0.1
        return Particle(particle_id, position, velocity, best_position=position.copy())

    def _interpret(
        self,
        records: List[TrafficRecord],
        position: np.ndarray,
        fitness: float,
        config: DetectorConfiguration,
    ) -> Anomaly:
        kind = rank_kind(threshold_scores(records, position))
        if kind is AnomalyType.NORMAL or fitness <= 0:
            return normal_anomaly(config, self.algorithm_name,
                                  "Normal traffic pattern detected by PSO analysis")

        score = min(fitness, config.max_anomaly_score)
        in_window = window_records(records, float(position[TIME_WINDOW]))
        return Anomaly(
            type=kind,
            score=score,
            description=(
                f"{kind.value} detected by particle swarm with thresholds "
                f"(ports {position[PORT_SCAN]:.1f}, connections {position[DDOS]:.1f}, "
                f"regularity {position[C2]:.1f}, outbound {position[EXFILTRATION]:.1f} MB, "
                f"window {position[TIME_WINDOW]:.0f}s, sensitivity {position[SENSITIVITY]:.2f}) "
                f"with score {score:.1f}"
            ),
            source_ips=source_addresses(in_window),
            destination_ips=destination_addresses(in_window),
            ports=observed_ports(in_window),
            status=status_for(score, config),
            configuration_used=config.name,
            algorithm=self.algorithm_name,
        )
