"""
参数配置：各算法的默认参数，以及从 JSON 文件覆盖默认值。
"""

import json
import logging
import os
from typing import Optional

from .types import DetectorConfiguration, InvalidArgumentError

logger = logging.getLogger(__name__)

ACO = "ACO"
BEE = "BEE"
PSO = "PSO"

ALGORITHMS = [ACO, BEE, PSO]


def default_configuration(algorithm: str) -> DetectorConfiguration:
    """
    获取指定算法的默认参数。

    参数：
        algorithm: "ACO" / "BEE" / "PSO"（不区分大小写）
    """
    key = (algorithm or "").upper()
    if key == ACO:
        return DetectorConfiguration(
            name="Default ACO Configuration",
            number_of_ants=10,
            max_iterations=5,
            pheromone_evaporation_rate=0.1,
            alpha=1.0,
            beta=2.0,
            q=100.0,
        )
    if key == BEE:
        return DetectorConfiguration(
            name="Default Bee Configuration",
            max_iterations=20,
            number_of_employed_bees=10,
            number_of_onlooker_bees=10,
            max_trial_count=3,
            acceptance_probability=0.1,
        )
    if key == PSO:
        return DetectorConfiguration(
            name="Default PSO Configuration",
            number_of_particles=20,
            max_iterations=10,
            inertia_weight=0.9,
            min_inertia_weight=0.4,
            cognitive_component=2.0,
            social_component=2.0,
            max_velocity=10.0,
        )
    raise InvalidArgumentError(f"Unknown algorithm: {algorithm}")


def load_configuration(
    config_file: Optional[str],
    algorithm: str = PSO,
) -> DetectorConfiguration:
    """
    加载参数配置：以算法默认值为基础，用 JSON 文件中的字段覆盖。

    文件不存在或格式错误时记录日志并返回默认值；未知字段忽略。
    """
    config = default_configuration(algorithm)
    if not config_file or not os.path.exists(config_file):
        return config

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            overrides = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Error loading configuration file %s: %s", config_file, e)
        return config

    if not isinstance(overrides, dict):
        logger.warning("Configuration file %s does not contain an object", config_file)
        return config

    merged = config.to_dict()
    merged.update(overrides)
    return DetectorConfiguration.from_dict(merged)
