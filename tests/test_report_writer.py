"""ReportWriter测试"""

import asyncio
import json
from unittest.mock import patch

import pytest

from mapverify.data.writer import ReportWriter
from mapverify.verify.checks import AssertionFailure


@pytest.mark.asyncio
class TestReportWriter:

    async def test_jsonl_append_write(self, tmp_path):
        """测试JSONL格式追加写入"""
        writer = ReportWriter(tmp_path / "reports" / "failures.jsonl")
        failure = AssertionFailure("es6", "round-trip", "bad", {"line": 1}, {"line": 2}, "bundle,lf")

        await writer.append_jsonl(failure.to_dict())

        lines = (tmp_path / "reports" / "failures.jsonl").read_text().splitlines()
        assert json.loads(lines[0]) == {
            "kind": "es6",
            "check": "round-trip",
            "permutation": "bundle,lf",
            "message": "bad",
            "expected": {"line": 1},
            "observed": {"line": 2},
        }
        assert writer.records_written == 1

    async def test_concurrent_write(self, tmp_path):
        """测试并发写入不会交错"""
        writer = ReportWriter(tmp_path / "failures.jsonl")

        await asyncio.gather(*(writer.append_jsonl({"id": i}) for i in range(10)))

        lines = (tmp_path / "failures.jsonl").read_text().splitlines()
        assert sorted(json.loads(line)["id"] for line in lines) == list(range(10))

    async def test_write_error_is_logged(self, tmp_path, caplog):
        """写入失败只记录警告，不抛出异常"""
        writer = ReportWriter(tmp_path / "failures.jsonl")

        with patch.object(writer, "_sync_write_jsonl", side_effect=OSError("disk full")):
            await writer.append_jsonl({"id": 1})

        assert writer.records_written == 0
        assert "Failed to write report record" in caplog.text
