"""
基于 Streamlit 的前端可视化中心。

数据流：
Source（文件 / 模拟 / 实时抓包）→ Parser → 群智能检测（ACO / BEE / PSO）→ 数据库 / Sink → 可视化。

启动：streamlit run src/swarmid/streamlit_app.py
"""

import logging
import pathlib
import threading
from collections import deque
from dataclasses import replace

import pandas as pd
import streamlit as st

from swarmid.core.config import ALGORITHMS, load_configuration
from swarmid.core.database import AnomalyFilter, AnomalyRepository
from swarmid.core.detection_engine import DetectionEngine
from swarmid.core.sink import log_anomaly, print_anomaly
from swarmid.core.source import (
    CaptureConfig,
    MonitoringMode,
    TrafficCollector,
    TrafficDataType,
    get_available_interfaces,
)
from swarmid.core.types import AnomalyStatus

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

UPLOAD_TYPES = {
    "Zeek conn.log": (TrafficDataType.ZEEK_LOGS, ["log", "txt"]),
    "Snort 告警": (TrafficDataType.SNORT_ALERTS, ["log", "txt", "alert"]),
    "pcap 文件": (TrafficDataType.PCAP_FILE, ["pcap", "pcapng"]),
}
MONITOR_BUFFER_SIZE = 1000


st.set_page_config(
    page_title="群智能网络异常检测",
    layout="wide",
)


@st.cache_resource
def get_repository() -> AnomalyRepository:
    return AnomalyRepository("data/swarmid.db")


# 初始化会话状态
if "engine" not in st.session_state:
    st.session_state.engine = DetectionEngine(get_repository())
if "monitor_buffer" not in st.session_state:
    st.session_state.monitor_buffer = deque(maxlen=MONITOR_BUFFER_SIZE)
    st.session_state.monitor_lock = threading.Lock()
if "collector" not in st.session_state:
    st.session_state.collector = None
if "records" not in st.session_state:
    st.session_state.records = []

engine: DetectionEngine = st.session_state.engine
repository = get_repository()

st.title("群智能网络异常检测")

with st.sidebar:
    st.header("检测算法")
    algorithm = st.selectbox("选择算法：", ALGORITHMS, index=ALGORITHMS.index(engine.current_algorithm))
    config_file = st.text_input("参数文件（JSON，可选）", value="")
    if st.button("应用算法"):
        configuration = load_configuration(config_file or None, algorithm)
        if engine.switch_algorithm(algorithm, configuration):
            st.success(f"已切换到 {algorithm}（{configuration.name}）")

    config = engine.detector.configuration()
    threshold = st.slider("异常阈值", min_value=0.0, max_value=float(config.max_anomaly_score),
                          value=float(config.anomaly_threshold))
    if threshold != config.anomaly_threshold:
        engine.detector.reconfigure(replace(config, anomaly_threshold=threshold))

    st.header("流量来源（Source）")
    source_mode = st.radio("选择流量来源：", ["上传文件", "模拟流量", "实时抓包"])

    upload = None
    upload_kind = None
    if source_mode == "上传文件":
        upload_label = st.selectbox("文件类型：", list(UPLOAD_TYPES))
        upload_kind, extensions = UPLOAD_TYPES[upload_label]
        upload = st.file_uploader("选择文件", type=extensions)
    else:
        iface = None
        if source_mode == "实时抓包":
            interfaces = get_available_interfaces()
            if interfaces:
                iface = st.selectbox("选择网络接口：", interfaces)
            else:
                iface = st.text_input("网络接口名称（如 eth0 / Wi-Fi）", value="")
        bpf_filter = st.text_input("BPF 过滤表达式", value="tcp or udp") if source_mode == "实时抓包" else None

        collector = st.session_state.collector
        if collector is not None and collector.is_monitoring:
            if st.button("停止监控"):
                collector.stop_monitoring()
                st.session_state.collector = None
                st.success("监控已停止")
        elif st.button("开始监控"):
            mode = MonitoringMode.SIMULATION if source_mode == "模拟流量" else MonitoringMode.REAL_TIME
            collector = TrafficCollector(mode=mode, capture=CaptureConfig(iface=iface, bpf_filter=bpf_filter))
            buffer, lock = st.session_state.monitor_buffer, st.session_state.monitor_lock

            def _on_record(record):
                with lock:
                    buffer.append(record)

            collector.subscribe(_on_record)
            collector.start_monitoring()
            st.session_state.collector = collector
            st.success(f"开始监控（{mode.value}）")

col_detect, col_alerts = st.columns(2)

with col_detect:
    st.subheader("流量与检测")

    if source_mode == "上传文件":
        if upload is None:
            st.info("请在左侧上传流量文件。")
        else:
            # 将上传文件保存到本地，便于后续分析和复现
            uploads_dir = pathlib.Path("data/uploads")
            uploads_dir.mkdir(parents=True, exist_ok=True)
            local_path = uploads_dir / upload.name
            with local_path.open("wb") as f:
                f.write(upload.read())
            st.session_state.records = TrafficCollector().parse(str(local_path), upload_kind)
            st.write(f"已保存到 `{local_path}`，解析得到 {len(st.session_state.records)} 条记录。")
    else:
        with st.session_state.monitor_lock:
            st.session_state.records = list(st.session_state.monitor_buffer)
        st.metric("缓冲区记录数", len(st.session_state.records))
        if st.button("刷新"):
            st.rerun()

    records = st.session_state.records
    if records:
        traffic_df = pd.DataFrame([
            {
                "timestamp": r.timestamp,
                "src_ip": r.src_ip,
                "dst_ip": r.dst_ip,
                "src_port": r.src_port,
                "dst_port": r.dst_port,
                "protocol": r.protocol,
                "packet_size": r.packet_size,
            }
            for r in records
        ])

        st.markdown("**协议分布**")
        st.bar_chart(traffic_df.groupby("protocol").size())

        st.markdown("**Top-N 源地址（按记录数）**")
        st.dataframe(
            traffic_df.groupby("src_ip").agg(records=("dst_port", "size"), ports=("dst_port", "nunique"))
            .sort_values("records", ascending=False).head(10),
            use_container_width=True,
        )

        if st.button(f"使用 {engine.current_algorithm} 检测"):
            with st.spinner("搜索中……"):
                anomaly = engine.analyze(records)
            log_anomaly(anomaly)
            print_anomaly(anomaly)
            if anomaly.status is AnomalyStatus.NEW:
                st.error(f"[{anomaly.type.value}] score={anomaly.score:.1f}：{anomaly.description}")
            else:
                st.success(f"未超过阈值：[{anomaly.type.value}] score={anomaly.score:.1f}")

    st.markdown("**检测统计**")
    st.write(engine.get_performance())

with col_alerts:
    st.subheader("异常告警（Sink 日志视图）")
    anomalies_log = pathlib.Path("data/anomalies.log")
    if anomalies_log.exists():
        with anomalies_log.open("r", encoding="utf-8") as f:
            lines = f.readlines()[-20:]
        for line in reversed(lines):
            st.code(line.strip(), language="json")
    else:
        st.write("当前尚无异常日志。")

# 历史数据查询与反馈
st.header("历史异常与分析员反馈")

page_size = st.slider("每页数量", min_value=5, max_value=100, value=20)
page_number = st.number_input("页码", min_value=1, value=1, step=1)
page = repository.page(page=int(page_number), page_size=page_size)
st.caption(f"共 {page.total_count} 条，{page.total_pages} 页")

if page.items:
    history_df = pd.DataFrame([a.to_dict() for a in page.items])
    st.dataframe(
        history_df[["detected_at", "type", "score", "status", "algorithm", "configuration_used", "description"]],
        use_container_width=True,
    )

    st.markdown("**异常类型分布**")
    st.bar_chart(pd.DataFrame([a.to_dict() for a in repository.list(AnomalyFilter(limit=1000))])
                 .groupby("type").size())

    st.markdown("**反馈**")
    for anomaly in page.items:
        # 低于阈值的结果以误报状态入库，分析员仍可确认
        if anomaly.status not in (AnomalyStatus.NEW, AnomalyStatus.FALSE_POSITIVE):
            continue
        with st.expander(f"[{anomaly.type.value}] {anomaly.score:.1f} {anomaly.detected_at:%Y-%m-%d %H:%M:%S}"):
            st.write(anomaly.description)
            st.write({"源地址": anomaly.source_ips, "目标地址": anomaly.destination_ips, "端口": anomaly.ports})
            note = st.text_input("备注", key=f"note_{anomaly.id}")
            confirm, reject = st.columns(2)
            if confirm.button("确认异常", key=f"confirm_{anomaly.id}"):
                engine.submit_feedback(anomaly.id, True, note or None)
                st.rerun()
            if reject.button("标记误报", key=f"reject_{anomaly.id}"):
                engine.submit_feedback(anomaly.id, False, note or None)
                st.rerun()
else:
    st.info("暂无历史异常记录。")
