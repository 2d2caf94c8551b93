"""
本地结果快照

Agent 每轮检查后把最近一次的结果写到本地 JSON 文件,
供 `node-checker local-status` 在不访问 API 的情况下查看。
读写通过 filelock 串行化。
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 10


class SnapshotStore:
    """最近一次检查结果的本地存储"""

    def __init__(self, path: str, lock_timeout: float = LOCK_TIMEOUT):
        self.path = Path(path)
        self.lock = FileLock(str(self.path) + ".lock", timeout=lock_timeout)

    def save(self, snapshot: Dict[str, Any]):
        """原子写入快照 (先写临时文件再替换)"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with self.lock:
            tmp.write_text(json.dumps(snapshot, indent=2, default=str), encoding="utf-8")
            os.replace(tmp, self.path)
        logger.debug("快照已保存: %s", self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        """读取快照,文件不存在或损坏时返回 None"""
        if not self.path.exists():
            return None
        try:
            with self.lock:
                return json.loads(self.path.read_text(encoding="utf-8"))
        except Timeout:
            logger.warning("读取快照超时 (锁被占用): %s", self.path)
            return None
        except ValueError as e:
            logger.warning("快照文件损坏: %s (%s)", self.path, e)
            return None
