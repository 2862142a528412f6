"""测试用例（fixture）定义与临时目录管理"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class Fixture:
    """一组原始源文件及其检查点

    markers: 以字符串字面量形式（"a0"）出现在源码中的标记
    identifiers: 以裸标识符形式出现、需要做位置往返检查的名字
    extra_files: 链式检查时与产物一起重新打包的无关文件
    """

    def __init__(self, kind: str, files: Dict[str, str], entry: str,
                 markers: Optional[List[str]] = None, identifiers: Optional[List[str]] = None,
                 chain: bool = False, extra_files: Optional[Dict[str, str]] = None):
        self.kind = kind
        self.files = files
        self.entry = entry
        self.markers = list(markers or [])
        self.identifiers = list(identifiers or [])
        self.chain = chain
        self.extra_files = dict(extra_files or {})

    @property
    def multi_file(self) -> bool:
        return len(self.files) > 1

    def __repr__(self) -> str:
        return f"Fixture({self.kind!r}, files={sorted(self.files)})"


CALL_CHAIN_MARKERS = [
    'a0', 'a1', 'a2',
    'b0', 'b1', 'b2',
    'c0', 'c1', 'c2',
]

ES6_FILES = {
    'a.js': """
    import {b0} from './b'
    function a0() { a1("a0") }
    function a1() { a2("a1") }
    function a2() { b0("a2") }
    a0()
  """,
    'b.js': """
    import {c0} from './c'
    export function b0() { b1("b0") }
    function b1() { b2("b1") }
    function b2() { c0("b2") }
  """,
    'c.js': """
    export function c0() { c1("c0") }
    function c1() { c2("c1") }
    function c2() { throw new Error("c2") }
  """,
}

COMMONJS_FILES = {
    'a.js': """
    const {b0} = require('./b')
    function a0() { a1("a0") }
    function a1() { a2("a1") }
    function a2() { b0("a2") }
    a0()
  """,
    'b.js': """
    const {c0} = require('./c')
    exports.b0 = function() { b1("b0") }
    function b1() { b2("b1") }
    function b2() { c0("b2") }
  """,
    'c.js': """
    exports.c0 = function() { c1("c0") }
    function c1() { c2("c1") }
    function c2() { throw new Error("c2") }
  """,
}

# Every file declares the same local names
IDENTICAL_LOCALS_FILES = {
    'a.js': """
    import {run as runB} from './b'
    function x0() { x1("x0") }
    function x1() { x2("x1") }
    function x2() { runB("x2") }
    x0()
  """,
    'b.js': """
    import {run as runC} from './c'
    function x0() { x1("x0") }
    function x1() { x2("x1") }
    function x2() { runC("x2") }
    export function run() { x0() }
  """,
    'c.js': """
    function x0() { x1("x0") }
    function x1() { x2("x1") }
    function x2() { throw new Error("x2") }
    export function run() { x0() }
  """,
}

NAMES_FILES = {
    'names.js': """
    function named_outer(named_arg) {
      let named_local = named_arg + 1
      for (const named_item of [named_local, named_arg]) {
        console.log("names", named_item)
      }
      return named_local * 2
    }
    console.log(named_outer(3))
  """,
}

CHAIN_FILES = {
    'app.js': """
    function named_first(named_value) { return named_second(named_value, "m0") }
    function named_second(named_value, named_tag) { return [named_value, named_tag, "m1"] }
    console.log(named_first("m2"))
  """,
}

CHAIN_EXTRA_FILES = {
    'extra.js': """
    console.log("unrelated extra file")
  """,
}


def builtin_fixtures() -> List[Fixture]:
    """内置的全部fixture"""
    return [
        Fixture('commonjs', COMMONJS_FILES, 'a.js', markers=CALL_CHAIN_MARKERS),
        Fixture('es6', ES6_FILES, 'a.js', markers=CALL_CHAIN_MARKERS),
        Fixture('minify-expression', {'in.js': 'console.log("a"+"b"+c)\n'}, 'in.js', identifiers=['c']),
        Fixture('identical-locals', IDENTICAL_LOCALS_FILES, 'a.js', markers=['x0', 'x1', 'x2']),
        Fixture('names', NAMES_FILES, 'names.js', markers=['names']),
        Fixture('chain', CHAIN_FILES, 'app.js', markers=['m0', 'm1', 'm2'],
                chain=True, extra_files=CHAIN_EXTRA_FILES),
    ]


def with_line_endings(text: str, crlf: bool) -> str:
    if not crlf:
        return text
    return text.replace("\r\n", "\n").replace("\n", "\r\n")


class FixtureWorkspace:
    """单个(fixture, 排列)任务的临时目录"""

    def __init__(self, root: Path, name: str):
        self.path = Path(root) / name

    async def write(self, files: Dict[str, str], crlf: bool = False) -> Dict[str, str]:
        """写入fixture文件，返回 绝对路径 -> 实际写入的文本"""
        written = {}
        for name, text in files.items():
            target = self.path / name
            content = with_line_endings(text, crlf)
            await asyncio.to_thread(self._write_file, target, content)
            written[os.path.abspath(str(target))] = content
        return written

    def _write_file(self, target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # newline=""避免平台换行转换
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    async def cleanup(self) -> None:
        """删除临时目录"""
        try:
            await asyncio.to_thread(shutil.rmtree, self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove {self.path}: {e}")
