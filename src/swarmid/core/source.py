"""
Source 层：负责网络流量的数据源。

支持的来源：
- LiveSource  : 实时抓包（使用 scapy.AsyncSniffer）
- PcapSource  : 离线 pcap 文件读取
- Zeek conn.log / Snort 告警文件
- 模拟流量（演示用）

TrafficCollector 把这些来源统一成 TrafficRecord 流：
parse() 一次性解析文件，start_monitoring() 在后台线程持续产生记录并推送给订阅者。
"""

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

import numpy as np

from scapy.all import AsyncSniffer, rdpcap, Packet  # type: ignore

from .parser import parse_packet, parse_snort_alert, parse_zeek_line, split_snort_alerts
from .types import InvalidArgumentError, PacketEvent, TrafficRecord, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CaptureConfig:
    iface: Optional[str] = None       # 网络接口名称，例如 "eth0" / "Wi-Fi"
    bpf_filter: Optional[str] = None  # BPF 过滤表达式，例如 "tcp or udp"
    count: int = 0                    # 抓取的数据包数量，0 表示不限制
    timeout: Optional[int] = None     # 抓包超时时间（秒）


class TrafficDataType(str, Enum):
    ZEEK_LOGS = "ZeekLogs"
    SNORT_ALERTS = "SnortAlerts"
    PCAP_FILE = "PcapFile"
    REAL_TIME = "RealTime"


class MonitoringMode(str, Enum):
    SIMULATION = "Simulation"
    REAL_TIME = "RealTime"


def live_sniffer(
    config: CaptureConfig,
    packet_callback: Callable[[PacketEvent], None],
) -> AsyncSniffer:
    """
    LiveSource：实时抓包。

    - 不做协议解析，只把每个包包装成 PacketEvent 交给 packet_callback。
    - 返回尚未启动的 AsyncSniffer，由调用方 start() / stop()；
      stop() 不依赖新数据包到达，空闲接口上也能立即结束。
    """

    def _wrap_and_callback(pkt: Packet) -> None:
        packet_callback(PacketEvent(timestamp=float(pkt.time), raw_packet=pkt))

    return AsyncSniffer(
        iface=config.iface,
        filter=config.bpf_filter,
        prn=_wrap_and_callback,
        count=config.count,
        timeout=config.timeout,
        store=False,
    )


def get_available_interfaces() -> list:
    """
    获取可用的网络接口列表。
    """
    from scapy.all import get_if_list
    return get_if_list()


def pcap_source(path: str) -> Iterable[PacketEvent]:
    """
    PcapSource：从离线 pcap 文件读取，输出 PacketEvent 流。
    """
    packets = rdpcap(path)
    return [
        PacketEvent(timestamp=float(pkt.time), raw_packet=pkt)
        for pkt in packets
    ]


SIMULATED_PROTOCOLS = ["TCP", "UDP", "ICMP"]
SIMULATED_SOURCES = ["192.168.1.100", "192.168.1.101", "192.168.1.102", "10.0.0.1", "172.16.0.1"]
SIMULATED_TARGETS = ["8.8.8.8", "1.1.1.1", "192.168.1.1", "10.0.0.254", "172.16.0.254"]
COMMON_PORTS = [80, 443, 22, 25, 53, 21, 23, 3389, 1433, 3306]
SUSPICIOUS_RATE = 0.1


def simulated_record(rng: np.random.Generator) -> TrafficRecord:
    """生成一条模拟流量；约 10% 为可疑流量（随机低端口、大包）。"""
    suspicious = bool(rng.random() < SUSPICIOUS_RATE)
    return TrafficRecord(
        timestamp=utc_now(),
        src_ip=SIMULATED_SOURCES[int(rng.integers(len(SIMULATED_SOURCES)))],
        src_port=int(rng.integers(1024, 65535)),
        dst_ip=SIMULATED_TARGETS[int(rng.integers(len(SIMULATED_TARGETS)))],
        dst_port=int(rng.integers(1, 1024)) if suspicious else COMMON_PORTS[int(rng.integers(len(COMMON_PORTS)))],
        protocol=SIMULATED_PROTOCOLS[int(rng.integers(len(SIMULATED_PROTOCOLS)))],
        duration=float(rng.random() * 300),
        packet_size=int(rng.integers(100, 1024 * 1024 if suspicious else 10240)),
        extra={
            "simulated": True,
            "suspicious": suspicious,
            "bytes_received": int(rng.integers(100, 10240)),
        },
    )


class TrafficCollector:
    """
    流量采集器：文件解析 + 后台监控。

    参数：
        mode     : 监控模式（模拟 / 实时抓包）
        capture  : 实时抓包参数
        interval : 模拟模式下两条记录之间的间隔（秒）
        seed     : 模拟模式的随机种子
    """

    def __init__(
        self,
        mode: MonitoringMode = MonitoringMode.SIMULATION,
        capture: Optional[CaptureConfig] = None,
        interval: float = 1.0,
        seed: Optional[int] = None,
    ):
        self.mode = mode
        self.capture = capture or CaptureConfig()
        self.interval = interval
        self._rng = np.random.default_rng(seed)
        self._subscribers: List[Callable[[TrafficRecord], None]] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sniffer: Optional[AsyncSniffer] = None
        self._lock = threading.Lock()

    def parse(self, path: str, kind: TrafficDataType) -> List[TrafficRecord]:
        """
        解析流量文件。

        文件不存在时抛出 FileNotFoundError；不支持的类型抛出 InvalidArgumentError。
        """
        kind = TrafficDataType(kind)
        if kind not in (TrafficDataType.ZEEK_LOGS, TrafficDataType.SNORT_ALERTS, TrafficDataType.PCAP_FILE):
            raise InvalidArgumentError(f"Unsupported data type for parsing: {kind.value}")
        if not os.path.exists(path):
            raise FileNotFoundError(path)

        if kind is TrafficDataType.PCAP_FILE:
            records = [r for r in (parse_packet(evt) for evt in pcap_source(path)) if r is not None]
        else:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                if kind is TrafficDataType.ZEEK_LOGS:
                    records = [r for r in (parse_zeek_line(line) for line in f) if r is not None]
                else:
                    blocks = split_snort_alerts(f.read())
                    records = [r for r in (parse_snort_alert(b) for b in blocks) if r is not None]

        logger.info("Parsed %d records from %s (%s)", len(records), path, kind.value)
        return records

    def subscribe(self, callback: Callable[[TrafficRecord], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    @property
    def is_monitoring(self) -> bool:
        if self._sniffer is not None and self._sniffer.running:
            return True
        return self._thread is not None and self._thread.is_alive()

    def start_monitoring(self) -> None:
        if self.is_monitoring:
            return
        self._stop_event.clear()
        if self.mode is MonitoringMode.SIMULATION:
            self._thread = threading.Thread(target=self._simulate, name="traffic-monitor", daemon=True)
            self._thread.start()
        else:
            self._sniffer = live_sniffer(self.capture, self._on_packet)
            self._sniffer.start()
        logger.info("Traffic monitoring started (%s)", self.mode.value)

    def stop_monitoring(self, timeout: Optional[float] = 5.0) -> None:
        """
        停止监控。

        调用返回后不再向订阅者推送记录；后台线程未能在 timeout 内退出时
        保留线程引用，is_monitoring 仍为 True。
        """
        self._stop_event.set()
        if self._sniffer is not None:
            if self._sniffer.running:
                try:
                    self._sniffer.stop()
                except OSError:
                    logger.exception("Live capture failed on %s", self.capture.iface)
            self._sniffer = None
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Traffic monitor thread did not exit within %s seconds", timeout)
                return
            self._thread = None
        logger.info("Traffic monitoring stopped")

    def _publish(self, record: TrafficRecord) -> None:
        if self._stop_event.is_set():
            return
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(record)
            except Exception:
                logger.exception("Traffic subscriber failed")

    def _simulate(self) -> None:
        while not self._stop_event.is_set():
            self._publish(simulated_record(self._rng))
            self._stop_event.wait(self.interval)

    def _on_packet(self, evt: PacketEvent) -> None:
        record = parse_packet(evt)
        if record is not None:
            self._publish(record)
