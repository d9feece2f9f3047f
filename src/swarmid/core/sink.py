"""
Sink 模块：负责检测结果的输出。

当前实现：
- 控制台打印
- 简单日志文件写入（JSON 行）
Streamlit 界面直接从数据库读取结果进行展示。
"""

import json
import pathlib

from .types import Anomaly


def log_anomaly(anomaly: Anomaly, log_path: str = "data/anomalies.log") -> None:
    """将异常记录写入日志文件（JSON 行）。"""
    pathlib.Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    line = json.dumps(anomaly.to_dict(), ensure_ascii=False)
    with open(log_path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def print_anomaly(anomaly: Anomaly) -> None:
    """在控制台打印简要异常信息。"""
    sources = ",".join(anomaly.source_ips[:3]) or "-"
    targets = ",".join(anomaly.destination_ips[:3]) or "-"
    print(
        f"[{anomaly.detected_at.isoformat()}] "
        f"[{anomaly.type.value}] [{anomaly.status.value}] "
        f"{sources} -> {targets}, score={anomaly.score:.1f} ({anomaly.algorithm})"
    )
