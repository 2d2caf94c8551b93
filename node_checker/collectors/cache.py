"""
kubectl 响应缓存模块

查询面 (节点信息、节点上的 Pod) 会被反复请求,
用 TTL + LRU 缓存减少 kubectl 调用。
调和循环和 Agent 的读写都绕过缓存。
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple


class K8sCache:
    """kubectl 响应缓存

    Example:
        cache = K8sCache(ttl_seconds=15, max_size=200)
        key = cache.generate_key("run", command="kubectl get node worker-0 -o json")
        if cache.get(key) is None:
            cache.set(key, await client.get_node("worker-0"))
    """

    def __init__(self, ttl_seconds: float = 15, max_size: int = 200):
        """
        Args:
            ttl_seconds: 条目有效期 (秒)
            max_size: 最大条目数,超出时淘汰最久未使用的条目
        """
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size

        # key -> (写入时间, 数据)
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def generate_key(method: str, **kwargs) -> str:
        """由方法名和参数生成稳定的缓存键"""
        payload = json.dumps({"method": method, "params": kwargs}, sort_keys=True)
        return hashlib.sha1(payload.encode()).hexdigest()

    def _expired(self, written_at: float, now: float) -> bool:
        return now - written_at > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """读取条目,不存在或已过期返回 None"""
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry[0], now):
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            # 返回浅拷贝,调用方修改标记不影响缓存内容
            data = entry[1]
            return dict(data) if isinstance(data, dict) else data

    def set(self, key: str, data: Any):
        """写入条目"""
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (time.monotonic(), data)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1

    def clear(self):
        """清空缓存并重置统计"""
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = self._evictions = 0

    def cleanup_expired(self) -> int:
        """删除全部过期条目

        Returns:
            删除的条目数
        """
        now = time.monotonic()
        with self._lock:
            stale = [k for k, (ts, _) in self._entries.items() if self._expired(ts, now)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def get_stats(self) -> Dict[str, Any]:
        """命中率等统计信息"""
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
                "ttl_seconds": self.ttl_seconds,
            }

    def __len__(self) -> int:
        return len(self._entries)


# 全局缓存实例
_cache: Optional[K8sCache] = None
_cache_lock = threading.Lock()


def get_cache(ttl_seconds: float = 15, max_size: int = 200) -> K8sCache:
    """获取全局缓存实例 (首次调用时创建)"""
    global _cache

    with _cache_lock:
        if _cache is None:
            _cache = K8sCache(ttl_seconds=ttl_seconds, max_size=max_size)
        return _cache


def reset_cache():
    """重置全局缓存"""
    global _cache

    with _cache_lock:
        _cache = None
