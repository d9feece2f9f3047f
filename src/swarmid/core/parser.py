"""
Parser 层：把各种来源的原始数据拆成 TrafficRecord。

- parse_packet      : scapy 数据包（PacketEvent）
- parse_zeek_line   : Zeek conn.log 的一行（制表符分隔）
- parse_snort_alert : Snort 告警文件中的一个告警块

解析失败返回 None，由调用方跳过，不抛异常。
"""

import logging
import re
from datetime import datetime
from typing import Optional

from scapy.all import ICMP, IP, IPv6, TCP, UDP, Raw  # type: ignore

from .types import PacketEvent, TrafficRecord, utc_from_timestamp

logger = logging.getLogger(__name__)

ZEEK_MIN_FIELDS = 15

SNORT_PATTERN = re.compile(
    r"(\d+/\d+)-(\d+:\d+:\d+\.\d+)\s+(\d+\.\d+\.\d+\.\d+):(\d+)\s+->\s+(\d+\.\d+\.\d+\.\d+):(\d+)\s*(\w+)?",
    re.MULTILINE | re.IGNORECASE,
)


def parse_packet(event: PacketEvent) -> Optional[TrafficRecord]:
    """
    将 PacketEvent 解析为 TrafficRecord。

    非 IP / IPv6 数据包返回 None。
    """
    pkt = event.raw_packet

    extra = {"pcap_parsed": True}
    if IP in pkt:
        ip_layer = pkt[IP]
        extra["ip_version"] = 4
        extra["ip_ttl"] = int(ip_layer.ttl)
        protocol_str = "TCP" if TCP in pkt else "UDP" if UDP in pkt else "ICMP" if ICMP in pkt else str(ip_layer.proto)
    elif IPv6 in pkt:
        ip_layer = pkt[IPv6]
        extra["ip_version"] = 6
        extra["ip_ttl"] = int(getattr(ip_layer, "hlim", 0))
        protocol_str = "TCP" if TCP in pkt else "UDP" if UDP in pkt else str(ip_layer.nh)
    else:
        return None

    src_port = dst_port = 0
    tcp_flags = ""
    if TCP in pkt:
        tcp = pkt[TCP]
        src_port = int(tcp.sport)
        dst_port = int(tcp.dport)
        tcp_flags = str(tcp.flags)
        extra["tcp_sequence"] = int(tcp.seq)
        extra["tcp_acknowledgment"] = int(tcp.ack)
        extra["tcp_window_size"] = int(tcp.window)
    elif UDP in pkt:
        udp = pkt[UDP]
        src_port = int(udp.sport)
        dst_port = int(udp.dport)
        extra["udp_length"] = int(udp.len or 0)
    elif ICMP in pkt:
        icmp = pkt[ICMP]
        extra["icmp_type"] = int(icmp.type)
        extra["icmp_code"] = int(icmp.code)

    if Raw in pkt:
        extra["payload_len"] = len(bytes(pkt[Raw].load or b""))

    return TrafficRecord(
        timestamp=utc_from_timestamp(float(event.timestamp)),
        src_ip=ip_layer.src,
        dst_ip=ip_layer.dst,
        src_port=src_port,
        dst_port=dst_port,
        protocol=protocol_str,
        packet_size=len(pkt),
        flags=tcp_flags,
        extra=extra,
    )


def _to_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _to_float(value: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_zeek_line(line: str) -> Optional[TrafficRecord]:
    """
    解析 Zeek conn.log 的一行。

    字段顺序：
        ts id.orig_h id.orig_p id.resp_h id.resp_p proto service duration
        orig_bytes resp_bytes conn_state local_orig local_resp missed_bytes history

    注释行、字段不足或时间戳无法解析的行返回 None；其余数值字段解析失败时取 0。
    """
    line = line.rstrip("\r\n")
    if not line or line.startswith("#"):
        return None

    fields = line.split("\t")
    if len(fields) < ZEEK_MIN_FIELDS:
        logger.debug("Skipping Zeek line with %d fields", len(fields))
        return None

    try:
        timestamp = utc_from_timestamp(float(fields[0]))
    except (ValueError, OverflowError, OSError):
        logger.warning("Skipping Zeek line with bad timestamp: %r", fields[0])
        return None

    return TrafficRecord(
        timestamp=timestamp,
        src_ip=fields[1],
        src_port=_to_int(fields[2]),
        dst_ip=fields[3],
        dst_port=_to_int(fields[4]),
        protocol=fields[5],
        duration=_to_float(fields[7]),
        packet_size=_to_int(fields[8]),
        extra={
            "service": fields[6],
            "conn_state": fields[10],
            "resp_bytes": _to_int(fields[9]),
        },
    )


def parse_snort_alert(block: str, year: Optional[int] = None) -> Optional[TrafficRecord]:
    """
    解析一个 Snort 告警块（"MM/DD-HH:MM:SS.ffffff src:port -> dst:port"）。

    告警中不带年份，默认取当前年份。
    """
    match = SNORT_PATTERN.search(block)
    if not match:
        return None

    date_str, time_str, src_ip, src_port, dst_ip, dst_port, protocol = match.groups()
    year = year or datetime.now().year
    try:
        timestamp = datetime.strptime(f"{year}/{date_str}-{time_str}", "%Y/%m/%d-%H:%M:%S.%f")
    except ValueError:
        logger.warning("Skipping Snort alert with bad timestamp: %s-%s", date_str, time_str)
        return None

    return TrafficRecord(
        timestamp=timestamp,
        src_ip=src_ip,
        src_port=int(src_port),
        dst_ip=dst_ip,
        dst_port=int(dst_port),
        protocol=(protocol or "tcp").lower(),
        extra={
            "alert_message": block.strip(),
            "is_alert": True,
        },
    )


def split_snort_alerts(content: str):
    """按 "[**]" 切分告警块，丢弃空白块。"""
    return [block for block in content.split("[**]") if block.strip()]
