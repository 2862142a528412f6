"""原始源码内容解析器 - 三种途径依次尝试"""

import logging
import os
from typing import Dict, Optional

from .document import MapDocument, is_url
from .errors import MissingContentError

logger = logging.getLogger(__name__)


class ContentResolver:
    """解析source map中某个source的原始文本

    依次尝试：
    1. sourcesContent中的文本（空字符串也算有效内容）
    2. 相对于map所在目录读取源文件
    3. 复用之前（通常是链式组合的内层）已解析过的同一源文件
    """

    def __init__(self):
        # 规范化路径 -> 已解析的内容
        self._resolved: Dict[str, str] = {}

    def content_for(self, doc: MapDocument, source_index: int) -> str:
        """返回原始文本，三种途径都失败时抛出MissingContentError"""
        path = doc.source_path(source_index)

        if doc.sources_content is not None and source_index < len(doc.sources_content):
            content = doc.sources_content[source_index]
            if content is not None:
                self._remember(path, content)
                return content

        content = self._read_file(path)
        if content is not None:
            self._remember(path, content)
            return content

        if path in self._resolved:
            logger.debug(f"Backfilled content for {path} from an earlier layer")
            return self._resolved[path]

        raise MissingContentError(doc.sources[source_index])

    def try_content_for(self, doc: MapDocument, source_index: int) -> Optional[str]:
        """同content_for，但解析失败时返回None（缺失标记）"""
        try:
            return self.content_for(doc, source_index)
        except MissingContentError:
            return None

    def remember(self, path: str, content: str) -> None:
        """登记一个已知源文件的内容（例如构建前写入的fixture文件）"""
        self._remember(os.path.normpath(path), content)

    def _remember(self, path: str, content: str) -> None:
        self._resolved.setdefault(path, content)

    def _read_file(self, path: str) -> Optional[str]:
        if is_url(path) or not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cannot read source {path}: {e}")
            return None
