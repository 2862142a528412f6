"""JSONL失败报告写入器"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class ReportWriter:
    """JSONL失败报告写入器，每条失败记录一行"""

    def __init__(self, report_path: Path):
        self.report_path = Path(report_path)
        self.lock = asyncio.Lock()
        self.records_written = 0

    async def append_jsonl(self, data: Dict[str, Any]) -> None:
        """加锁的追加写入JSONL（使用asyncio.to_thread避免阻塞事件循环）"""
        json_line = json.dumps(data, ensure_ascii=False, default=str) + "\n"
        try:
            self.report_path.parent.mkdir(parents=True, exist_ok=True)
            async with self.lock:
                await asyncio.to_thread(self._sync_write_jsonl, json_line)
                self.records_written += 1
        except OSError as e:
            logger.warning(f"Failed to write report record to {self.report_path}: {e}")
            # 不抛出异常，报告写入失败不影响校验结果

    def _sync_write_jsonl(self, json_line: str) -> None:
        """同步文件写入（在thread中执行）"""
        with open(self.report_path, 'a', encoding='utf-8') as f:
            f.write(json_line)
            f.flush()
            os.fsync(f.fileno())
