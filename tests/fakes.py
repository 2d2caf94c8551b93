"""
测试替身: 宿主机命令、kubectl 与集群 API
"""

from typing import Any, Dict, List, Optional

from node_checker.collectors.host_runner import HostCommandRunner
from node_checker.collectors.nodecheck import NodeCheck, NodeCheckSpec, build_nodecheck_object
from node_checker.utils.errors import (
    CommandFailedError,
    DiagnosticErrorCode,
    NamespaceEntryError,
    OrchestrationAPIError,
    ToolUnavailableError,
)


class FakeRunner(HostCommandRunner):
    """按命令文本返回预设输出的执行器

    host / container 的值可以是字符串 (成功输出) 或 DiagnosticError (失败)。
    未登记的命令在宿主机上视为 nsenter 失败,在容器内视为工具不存在。
    """

    def __init__(self, host: Optional[Dict] = None, container: Optional[Dict] = None,
                 files: Optional[Dict[str, str]] = None):
        super().__init__(host_root="/nonexistent-host-root", timeout=5)
        self.host = host or {}
        self.container = container or {}
        self.files = files or {}
        self.calls: List[tuple] = []

    @staticmethod
    def _resolve(table: Dict, command: str, missing):
        value = table.get(command, missing)
        if isinstance(value, Exception):
            return getattr(value, "output", ""), value
        return value, None

    async def run_host(self, command, timeout=None, requires=()):
        self.calls.append(("host", command))
        return self._resolve(
            self.host, command,
            NamespaceEntryError("failed to enter host namespaces", command=command),
        )

    async def run_container(self, command, timeout=None, requires=()):
        self.calls.append(("container", command))
        return self._resolve(
            self.container, command,
            ToolUnavailableError(f"command not found: {command}", tool=command.split()[0]),
        )

    def read_file(self, path):
        if path in self.files:
            return self.files[path], "host"
        raise ToolUnavailableError(f"cannot read {path}", tool=path)

    def path_exists(self, path):
        return path in self.files


def command_failed(command: str, output: str = "") -> CommandFailedError:
    return CommandFailedError("exit status 1", command=command, returncode=1, output=output)


class FakeKubectl:
    """KubectlWrapper 的最小替身 (检查器与查询层使用)"""

    def __init__(self, node: Optional[Dict] = None, pods: Optional[List[Dict]] = None,
                 metrics: Optional[Dict] = None, api_versions: str = "v1\napps/v1",
                 operators: Optional[Dict] = None):
        self.node = node
        self.pods = pods
        self.metrics = metrics
        self.api_versions = api_versions
        self.operators = operators
        self.calls: List[str] = []

    @staticmethod
    def _ok(data):
        return {"success": True, "data": data, "error": "", "not_found": False}

    @staticmethod
    def _fail(error="boom", not_found=False):
        return {"success": False, "data": None, "error": error, "not_found": not_found}

    async def get_node(self, name, use_cache=True):
        self.calls.append(f"node/{name}")
        if self.node is None:
            return self._fail(f'nodes "{name}" not found', not_found=True)
        return self._ok(self.node)

    async def get_pods(self, namespace=None, selector=None, field_selector=None, use_cache=True):
        self.calls.append(f"pods/{field_selector}")
        if self.pods is None:
            return self._fail("forbidden")
        return self._ok({"items": self.pods})

    async def get_node_metrics(self, name):
        if self.metrics is None:
            return self._fail("the server could not find the requested resource")
        return self._ok(self.metrics)

    async def get_api_versions(self):
        self.calls.append("api-versions")
        return self._ok(self.api_versions)

    async def get_cluster_operators(self):
        if self.operators is None:
            return self._fail("the server doesn't have a resource type \"clusteroperators\"")
        return self._ok(self.operators)


class FakeClusterApi:
    """ClusterApi 的内存实现,记录所有写操作"""

    def __init__(self, nodechecks: Optional[List[Dict]] = None,
                 daemonset: Optional[Dict] = None, nodes: Optional[List[Dict]] = None):
        self.objects: Dict[str, Dict] = {}
        for obj in nodechecks or []:
            obj["metadata"].setdefault("resourceVersion", "1")
            self.objects[obj["metadata"]["name"]] = obj
        self.daemonset = daemonset
        self.nodes = nodes or []
        self.mutations: List[tuple] = []
        self.fail_with: Optional[OrchestrationAPIError] = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def list_nodechecks(self, namespace=None) -> List[NodeCheck]:
        self._check()
        return [NodeCheck.from_k8s(obj) for obj in self.objects.values()]

    async def get_nodecheck(self, name, namespace) -> Optional[NodeCheck]:
        self._check()
        obj = self.objects.get(name)
        return NodeCheck.from_k8s(obj) if obj else None

    async def create_nodecheck(self, obj):
        self._check()
        obj["metadata"].setdefault("resourceVersion", "1")
        self.objects[obj["metadata"]["name"]] = obj
        self.mutations.append(("create_nodecheck", obj["metadata"]["name"]))
        return obj

    async def update_nodecheck_spec(self, name, namespace, spec, resource_version=None):
        self._check()
        metadata = self.objects[name]["metadata"]
        if resource_version is not None and resource_version != metadata.get("resourceVersion"):
            raise OrchestrationAPIError(
                "the object has been modified; please apply your changes to the latest version",
                resource_type="nodecheck", resource_name=name, code=DiagnosticErrorCode.CONFLICT,
            )
        self.objects[name].setdefault("spec", {}).update(spec)
        metadata["resourceVersion"] = str(int(metadata.get("resourceVersion", "1")) + 1)
        self.mutations.append(("update_nodecheck_spec", name))
        return self.objects[name]

    async def update_nodecheck_status(self, name, namespace, status):
        self._check()
        self.objects[name]["status"] = status
        metadata = self.objects[name]["metadata"]
        metadata["resourceVersion"] = str(int(metadata.get("resourceVersion", "1")) + 1)
        self.mutations.append(("update_nodecheck_status", name))
        return self.objects[name]

    async def delete_nodecheck(self, name, namespace):
        self._check()
        self.objects.pop(name, None)
        self.mutations.append(("delete_nodecheck", name))

    async def get_daemonset(self, name, namespace):
        self._check()
        return self.daemonset

    async def create_daemonset(self, obj):
        self._check()
        self.daemonset = dict(obj, metadata=dict(obj["metadata"], resourceVersion="1"))
        self.mutations.append(("create_daemonset", obj["metadata"]["name"]))
        return self.daemonset

    async def update_daemonset(self, obj):
        self._check()
        self.daemonset = obj
        self.mutations.append(("update_daemonset", obj["metadata"]["name"]))
        return obj

    async def delete_daemonset(self, name, namespace):
        self._check()
        self.daemonset = None
        self.mutations.append(("delete_daemonset", name))

    async def list_nodes(self, selector=None) -> List[Dict]:
        self._check()
        selector = selector or {}
        matched = []
        for node in self.nodes:
            labels = (node.get("metadata") or {}).get("labels") or {}
            if all(labels.get(k) == v for k, v in selector.items()):
                matched.append(node)
        return matched


def nodecheck_object(name: str, namespace: str = "test-ns", status: Optional[Dict] = None,
                     labels: Optional[Dict] = None, **spec: Any) -> Dict:
    """构造 NodeCheck API 对象,spec 参数使用 camelCase 或 snake_case 字段名"""
    obj = build_nodecheck_object(
        name, namespace, NodeCheckSpec.model_validate(spec), labels=labels
    )
    if status is not None:
        obj["status"] = status
    return obj


def node_object(name: str, labels: Optional[Dict] = None) -> Dict:
    return {"metadata": {"name": name, "labels": labels or {}}}
