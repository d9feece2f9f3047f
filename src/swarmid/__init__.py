"""
群智能网络异常检测核心包。

模块划分：
- core.source          : 流量来源与采集（Source）
- core.parser          : 协议 / 日志解析（Parser）
- core.features        : 批量统计（Feature）
- core.ant_colony      : 蚁群检测器
- core.bee_colony      : 蜂群检测器
- core.particle_swarm  : 粒子群检测器
- core.detection_engine: 算法选择与检测入口
- core.database        : 异常记录持久化
- core.sink            : 结果输出
"""
