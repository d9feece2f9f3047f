"""
数据库模块：异常记录的持久化与查询。

使用 SQLite 作为本地数据库，方便部署和使用。
每个操作单独打开一次连接，不跨线程共享连接。
"""

import json
import logging
import math
import os
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .types import Anomaly, AnomalyStatus, AnomalyType

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/swarmid.db"


class RepositoryError(Exception):
    """数据库读写失败。"""


@dataclass
class AnomalyFilter:
    """查询条件；为 None 的字段不参与过滤。"""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[AnomalyStatus] = None
    type: Optional[AnomalyType] = None
    algorithm: Optional[str] = None
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class Page:
    items: List[Anomaly]
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class AnomalyRepository:
    """
    异常记录仓库：负责数据库的初始化、连接和操作。
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn:
                cursor = conn.cursor()
                cursor.execute(sql, params)
                rows = cursor.fetchall()
                conn.commit()
                return rows
        except sqlite3.Error as e:
            logger.error("Database error on %s: %s", self.db_path, e)
            raise RepositoryError(str(e)) from e

    def _init_db(self):
        """
        初始化数据库表结构。
        """
        self._execute('''
        CREATE TABLE IF NOT EXISTS anomalies (
            id TEXT PRIMARY KEY,
            detected_at TEXT NOT NULL,
            type TEXT NOT NULL,
            score REAL NOT NULL,
            description TEXT NOT NULL,
            source_ips TEXT NOT NULL,
            destination_ips TEXT NOT NULL,
            ports TEXT NOT NULL,
            status TEXT NOT NULL,
            analyst_feedback TEXT,
            configuration_used TEXT,
            algorithm TEXT
        )
        ''')
        self._execute("CREATE INDEX IF NOT EXISTS idx_anomalies_detected_at ON anomalies (detected_at)")

    def save(self, anomaly: Anomaly) -> Anomaly:
        """
        插入异常记录；相同 id 已存在时整条覆盖。
        """
        self._execute(
            '''
            INSERT OR REPLACE INTO anomalies (
                id, detected_at, type, score, description, source_ips, destination_ips,
                ports, status, analyst_feedback, configuration_used, algorithm
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            self._to_row(anomaly)
        )
        return anomaly

    def update(self, anomaly: Anomaly) -> bool:
        """
        更新已有记录；id 不存在时不做任何事，返回 False。
        """
        if self.get_by_id(anomaly.id) is None:
            logger.warning("Update skipped: anomaly %s not found", anomaly.id)
            return False
        row = self._to_row(anomaly)
        self._execute(
            '''
            UPDATE anomalies SET
                detected_at = ?, type = ?, score = ?, description = ?, source_ips = ?,
                destination_ips = ?, ports = ?, status = ?, analyst_feedback = ?,
                configuration_used = ?, algorithm = ?
            WHERE id = ?
            ''',
            row[1:] + (row[0],)
        )
        return True

    def get_by_id(self, anomaly_id: str) -> Optional[Anomaly]:
        rows = self._execute("SELECT * FROM anomalies WHERE id = ?", (anomaly_id,))
        return self._from_row(rows[0]) if rows else None

    def list(self, anomaly_filter: Optional[AnomalyFilter] = None) -> List[Anomaly]:
        """
        按条件查询，按检测时间倒序。
        """
        anomaly_filter = anomaly_filter or AnomalyFilter()
        where, params = self._where(anomaly_filter)
        sql = f"SELECT * FROM anomalies{where} ORDER BY detected_at DESC"
        if anomaly_filter.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params += (anomaly_filter.limit, anomaly_filter.offset)
        elif anomaly_filter.offset:
            sql += " LIMIT -1 OFFSET ?"
            params += (anomaly_filter.offset,)
        return [self._from_row(row) for row in self._execute(sql, params)]

    def count(self, anomaly_filter: Optional[AnomalyFilter] = None) -> int:
        where, params = self._where(anomaly_filter or AnomalyFilter())
        rows = self._execute(f"SELECT COUNT(*) AS total FROM anomalies{where}", params)
        return int(rows[0]["total"])

    def page(
        self,
        page: int = 1,
        page_size: int = 20,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Page:
        """
        分页查询；page 从 1 开始。
        """
        page = max(page, 1)
        page_size = max(page_size, 1)
        anomaly_filter = AnomalyFilter(start=start, end=end, limit=page_size, offset=(page - 1) * page_size)
        return Page(
            items=self.list(anomaly_filter),
            page=page,
            page_size=page_size,
            total_count=self.count(AnomalyFilter(start=start, end=end)),
        )

    def delete(self, anomaly_id: str) -> bool:
        if self.get_by_id(anomaly_id) is None:
            return False
        self._execute("DELETE FROM anomalies WHERE id = ?", (anomaly_id,))
        return True

    @staticmethod
    def _where(anomaly_filter: AnomalyFilter) -> Tuple[str, Tuple]:
        clauses: List[str] = []
        params: List[Any] = []
        if anomaly_filter.start is not None:
            clauses.append("detected_at >= ?")
            params.append(anomaly_filter.start.isoformat())
        if anomaly_filter.end is not None:
            clauses.append("detected_at <= ?")
            params.append(anomaly_filter.end.isoformat())
        if anomaly_filter.status is not None:
            clauses.append("status = ?")
            params.append(AnomalyStatus(anomaly_filter.status).value)
        if anomaly_filter.type is not None:
            clauses.append("type = ?")
            params.append(AnomalyType(anomaly_filter.type).value)
        if anomaly_filter.algorithm:
            clauses.append("algorithm = ?")
            params.append(anomaly_filter.algorithm)
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, tuple(params)

    @staticmethod
    def _to_row(anomaly: Anomaly) -> Tuple:
        return (
            anomaly.id,
            anomaly.detected_at.isoformat(),
            anomaly.type.value,
            anomaly.score,
            anomaly.description,
            json.dumps(list(anomaly.source_ips)),
            json.dumps(list(anomaly.destination_ips)),
            json.dumps(list(anomaly.ports)),
            anomaly.status.value,
            anomaly.analyst_feedback,
            anomaly.configuration_used,
            anomaly.algorithm,
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Anomaly:
        data: Dict[str, Any] = dict(row)
        for key in ("source_ips", "destination_ips", "ports"):
            data[key] = json.loads(data[key] or "[]")
        return Anomaly.from_dict(data)
