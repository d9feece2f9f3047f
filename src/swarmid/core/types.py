"""
检测引擎内部与各协作方之间共享的统一数据结构。

- PacketEvent           : Source 层输出的原始包事件
- TrafficRecord         : 采集层输出的单条流量记录（只读）
- Anomaly               : 检测器一次搜索结束后输出的异常记录
- DetectorConfiguration : 三种群智能算法共用的参数结构
"""

import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List


def utc_now() -> datetime:
    """当前 UTC 时间（不带时区信息）。"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_from_timestamp(ts: float) -> datetime:
    """Unix 时间戳转为不带时区信息的 UTC 时间。"""
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


@dataclass
class PacketEvent:
    """Source 层：单个抓取事件。"""

    timestamp: float
    raw_packet: Any


class InvalidArgumentError(ValueError):
    """参数缺失或取值非法（如 reconfigure(None)、缺少持久化协作方）。"""


class AnomalyType(str, Enum):
    NORMAL = "Normal"
    PORT_SCAN = "PortScan"
    DDOS = "DDoS"
    COMMAND_AND_CONTROL = "CommandAndControl"
    DATA_EXFILTRATION = "DataExfiltration"
    UNUSUAL_TRAFFIC = "UnusualTraffic"


class AnomalyStatus(str, Enum):
    NEW = "New"
    INVESTIGATING = "Investigating"
    INVESTIGATED = "Investigated"
    CONFIRMED = "Confirmed"
    FALSE_POSITIVE = "FalsePositive"
    RESOLVED = "Resolved"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TrafficRecord:
    """采集层：单条流量记录，产生后不再修改。"""

    timestamp: datetime
    src_ip: str
    dst_ip: str
    src_port: int = 0
    dst_port: int = 0
    protocol: str = ""
    packet_size: int = 0
    flags: str = ""
    duration: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)
    id: str = field(default_factory=_new_id, compare=False)


@dataclass
class Anomaly:
    """
    检测层：一次检测调用输出的异常记录。

    创建后只有反馈路径（status）和持久化层会修改它。
    """

    type: AnomalyType
    score: float
    description: str
    status: AnomalyStatus
    algorithm: str
    configuration_used: str = ""
    source_ips: List[str] = field(default_factory=list)
    destination_ips: List[str] = field(default_factory=list)
    ports: List[int] = field(default_factory=list)
    analyst_feedback: Optional[str] = None
    detected_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "detected_at": self.detected_at.isoformat(),
            "type": self.type.value,
            "score": self.score,
            "description": self.description,
            "source_ips": list(self.source_ips),
            "destination_ips": list(self.destination_ips),
            "ports": list(self.ports),
            "status": self.status.value,
            "analyst_feedback": self.analyst_feedback,
            "configuration_used": self.configuration_used,
            "algorithm": self.algorithm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Anomaly":
        detected_at = data.get("detected_at")
        if isinstance(detected_at, str):
            detected_at = datetime.fromisoformat(detected_at)
        return cls(
            id=data.get("id") or _new_id(),
            detected_at=detected_at or utc_now(),
            type=AnomalyType(data.get("type", AnomalyType.NORMAL.value)),
            score=float(data.get("score", 0.0)),
            description=data.get("description", ""),
            source_ips=list(data.get("source_ips") or []),
            destination_ips=list(data.get("destination_ips") or []),
            ports=[int(p) for p in data.get("ports") or []],
            status=AnomalyStatus(data.get("status", AnomalyStatus.NEW.value)),
            analyst_feedback=data.get("analyst_feedback"),
            configuration_used=data.get("configuration_used", ""),
            algorithm=data.get("algorithm", ""),
        )


@dataclass
class DetectorConfiguration:
    """
    三种算法共用的参数结构。

    每个检测器只读取与自身相关的字段，其余字段原样保留、不做校验。
    """

    name: str = ""
    max_anomaly_score: float = 100.0
    anomaly_threshold: float = 50.0

    # 蚁群（信息素）参数
    number_of_ants: int = 20
    max_iterations: int = 100
    pheromone_evaporation_rate: float = 0.1
    alpha: float = 1.0  # 信息素重要度
    beta: float = 2.0   # 启发式重要度
    q: float = 100.0    # 信息素沉积系数

    # 蜂群（觅食）参数
    number_of_employed_bees: int = 10
    number_of_onlooker_bees: int = 10
    max_trial_count: int = 5
    acceptance_probability: float = 0.1

    # 粒子群参数
    number_of_particles: int = 20
    inertia_weight: float = 0.9
    min_inertia_weight: float = 0.4
    cognitive_component: float = 2.0
    social_component: float = 2.0
    max_velocity: float = 10.0

    created_at: datetime = field(default_factory=utc_now)
    is_active: bool = True
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectorConfiguration":
        """未知字段直接忽略。"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if isinstance(values.get("created_at"), str):
            values["created_at"] = datetime.fromisoformat(values["created_at"])
        return cls(**values)
