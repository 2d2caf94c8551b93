"""
Kubernetes 客户端 - 基于 kubectl

使用策略:
1. 读操作: kubectl get ... -o json,可选缓存
2. 写操作: 对象通过 stdin 提交 (create/replace -f -),状态通过 --subresource=status 合并补丁
3. 指标: kubectl get --raw 访问 metrics.k8s.io
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from .cache import get_cache
from .nodecheck import RESOURCE as NODECHECK_RESOURCE


class KubectlWrapper:
    """kubectl 封装

    集成缓存机制,减少重复的 kubectl 调用。
    """

    def __init__(self, context: Optional[str] = None, enable_cache: bool = True):
        """
        Args:
            context: kubeconfig context (默认使用 current-context)
            enable_cache: 是否启用缓存 (默认 True)
        """
        self.context = context
        self.enable_cache = enable_cache
        self.kubectl_cmd = self._build_kubectl_cmd()
        self.cache = get_cache() if enable_cache else None

    def _build_kubectl_cmd(self) -> List[str]:
        """构建 kubectl 命令前缀"""
        cmd = ["kubectl"]
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    async def run(
        self,
        cmd: List[str],
        timeout: int = 10,
        use_cache: bool = True,
        stdin: Optional[str] = None,
    ) -> Dict:
        """
        执行命令并解析结果

        Args:
            cmd: 命令列表
            timeout: 超时时间（秒）
            use_cache: 是否使用缓存 (默认 True)
            stdin: 写入标准输入的内容 (用于 -f -)

        Returns:
            {"success": bool, "data": any, "error": str, "not_found": bool, "conflict": bool}
        """
        cache_key = None
        if self.enable_cache and use_cache and self.cache and stdin is None:
            cache_key = self.cache.generate_key(
                method="run",
                command=" ".join(cmd),
                timeout=timeout
            )

            cached_result = self.cache.get(cache_key)
            if cached_result is not None:
                cached_result["_cached"] = True
                return cached_result

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(stdin.encode() if stdin is not None else None),
                    timeout=timeout,
                )
            except (asyncio.TimeoutError, asyncio.CancelledError):
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()
                raise

            out_text = stdout.decode("utf-8", errors="replace")
            err_text = stderr.decode("utf-8", errors="replace").strip()

            if proc.returncode != 0:
                # 失败结果不缓存
                return {
                    "success": False,
                    "error": err_text or out_text.strip(),
                    "not_found": _is_not_found(err_text),
                    "conflict": _is_conflict(err_text),
                    "cmd": " ".join(cmd)
                }

            try:
                data = json.loads(out_text)
                response = {"success": True, "data": data}
            except json.JSONDecodeError:
                # 不是 JSON，返回原始文本
                response = {"success": True, "data": out_text.strip()}

            if cache_key is not None:
                response["_cached"] = False
                self.cache.set(cache_key, response)

            return response

        except asyncio.TimeoutError:
            return {
                "success": False,
                "error": f"Command timed out after {timeout}s",
                "not_found": False,
                "cmd": " ".join(cmd)
            }
        except OSError as e:
            return {
                "success": False,
                "error": str(e),
                "not_found": False,
                "cmd": " ".join(cmd)
            }

    # === 标准 K8s 资源操作 ===

    async def get_nodes(self, selector: Optional[str] = None, use_cache: bool = True) -> Dict:
        """获取节点列表"""
        cmd = self.kubectl_cmd + ["get", "nodes"]
        if selector:
            cmd.extend(["-l", selector])
        cmd.extend(["-o", "json"])
        return await self.run(cmd, timeout=10, use_cache=use_cache)

    async def get_node(self, name: str, use_cache: bool = True) -> Dict:
        """获取单个节点"""
        cmd = self.kubectl_cmd + ["get", "node", name, "-o", "json"]
        return await self.run(cmd, timeout=10, use_cache=use_cache)

    async def get_pods(self, namespace: str = None,
                       selector: str = None,
                       field_selector: str = None,
                       use_cache: bool = True) -> Dict:
        """获取 Pod 列表"""
        cmd = self.kubectl_cmd + ["get", "pods"]

        if namespace:
            cmd.extend(["-n", namespace])
        else:
            cmd.append("-A")

        if selector:
            cmd.extend(["-l", selector])

        if field_selector:
            cmd.extend(["--field-selector", field_selector])

        cmd.extend(["-o", "json"])
        return await self.run(cmd, timeout=15, use_cache=use_cache)

    async def get_node_metrics(self, name: str) -> Dict:
        """通过 metrics.k8s.io 获取节点实时用量"""
        cmd = self.kubectl_cmd + [
            "get", "--raw", f"/apis/metrics.k8s.io/v1beta1/nodes/{name}"
        ]
        return await self.run(cmd, timeout=10, use_cache=False)

    async def get_api_versions(self) -> Dict:
        """获取集群支持的 API 组版本"""
        cmd = self.kubectl_cmd + ["api-versions"]
        return await self.run(cmd, timeout=10)

    async def get_cluster_operators(self) -> Dict:
        """获取 OpenShift ClusterOperator 列表"""
        cmd = self.kubectl_cmd + [
            "get", "clusteroperators.config.openshift.io", "-o", "json"
        ]
        return await self.run(cmd, timeout=15, use_cache=False)

    # === NodeCheck 操作 ===

    async def list_nodechecks(self, namespace: Optional[str] = None,
                              selector: Optional[str] = None) -> Dict:
        """获取 NodeCheck 列表 (不走缓存)"""
        cmd = self.kubectl_cmd + ["get", NODECHECK_RESOURCE]
        if namespace:
            cmd.extend(["-n", namespace])
        else:
            cmd.append("-A")
        if selector:
            cmd.extend(["-l", selector])
        cmd.extend(["-o", "json"])
        return await self.run(cmd, timeout=15, use_cache=False)

    async def get_nodecheck(self, name: str, namespace: str) -> Dict:
        cmd = self.kubectl_cmd + [
            "get", NODECHECK_RESOURCE, name, "-n", namespace, "-o", "json"
        ]
        return await self.run(cmd, timeout=10, use_cache=False)

    async def patch_nodecheck(self, name: str, namespace: str,
                              patch: Dict[str, Any], status: bool = False) -> Dict:
        """合并补丁;status=True 时写状态子资源"""
        cmd = self.kubectl_cmd + [
            "patch", NODECHECK_RESOURCE, name, "-n", namespace,
            "--type=merge", "-p", json.dumps(patch),
        ]
        if status:
            cmd.append("--subresource=status")
        return await self.run(cmd, timeout=15, use_cache=False)

    # === 通用写操作 ===

    async def create_object(self, obj: Dict[str, Any]) -> Dict:
        """创建对象 (kubectl create -f -)"""
        cmd = self.kubectl_cmd + ["create", "-f", "-", "-o", "json"]
        return await self.run(cmd, timeout=15, use_cache=False, stdin=json.dumps(obj))

    async def replace_object(self, obj: Dict[str, Any]) -> Dict:
        """原地替换对象 (kubectl replace -f -)"""
        cmd = self.kubectl_cmd + ["replace", "-f", "-", "-o", "json"]
        return await self.run(cmd, timeout=15, use_cache=False, stdin=json.dumps(obj))

    async def delete_object(self, resource: str, name: str, namespace: str) -> Dict:
        cmd = self.kubectl_cmd + [
            "delete", resource, name, "-n", namespace, "--wait=false"
        ]
        return await self.run(cmd, timeout=15, use_cache=False)

    async def get_daemonset(self, name: str, namespace: str) -> Dict:
        """获取 DaemonSet (不走缓存)"""
        cmd = self.kubectl_cmd + [
            "get", "daemonset", name,
            "-n", namespace,
            "-o", "json"
        ]
        return await self.run(cmd, timeout=10, use_cache=False)

    # === 缓存管理方法 ===

    def get_cache_stats(self) -> Optional[Dict]:
        """获取缓存统计信息

        Returns:
            缓存统计字典,未启用缓存时返回 None
        """
        if self.cache:
            return self.cache.get_stats()
        return None

    def clear_cache(self):
        """清空缓存"""
        if self.cache:
            self.cache.clear()


def _is_not_found(stderr: str) -> bool:
    """kubectl 的 NotFound 错误输出"""
    text = stderr or ""
    return "NotFound" in text or "not found" in text


def _is_conflict(stderr: str) -> bool:
    """resourceVersion 过期导致的 409 Conflict"""
    text = stderr or ""
    return "the object has been modified" in text or "(Conflict)" in text


def items_of(result: Dict) -> List[Dict]:
    """从列表结果中取 items,失败时返回空列表"""
    if not result.get("success"):
        return []
    data = result.get("data")
    if isinstance(data, dict):
        return data.get("items") or []
    return []


# 全局单例
_client = None


def get_k8s_client(context: str = None) -> KubectlWrapper:
    """获取 K8s 客户端实例"""
    global _client
    if _client is None:
        _client = KubectlWrapper(context=context)
    return _client
