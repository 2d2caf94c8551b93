"""
Agent DaemonSet 的期望状态

- merge_constraints: 把所有 NodeCheck 的调度约束合并为一份
- build_daemonset: 根据合并后的约束生成完整的 DaemonSet 对象
- diff_daemonset: 比较现有对象与期望对象中需要同步的字段
"""

from typing import Any, Dict, Iterable, List, Tuple

from ..collectors.nodecheck import NodeCheck, Toleration

DAEMONSET_NAME = "node-check-executor"
APP_LABEL = {"app": DAEMONSET_NAME}
CONTAINER_NAME = "executor"
SERVICE_ACCOUNT = "node-check-operator-controller-manager"
METRICS_PORT = 8080
HEALTH_PORT = 8081

# (卷名, 宿主机路径, 容器内路径)
HOST_MOUNTS = [
    ("proc", "/proc", "/host/proc"),
    ("sys", "/sys", "/host/sys"),
    ("run", "/run", "/host/run"),
    ("root", "/", "/host/root"),
    ("dev", "/dev", "/host/dev"),
]


def merge_constraints(nodechecks: Iterable[NodeCheck]) -> Tuple[Dict[str, str], List[Dict]]:
    """合并调度约束

    - nodeSelector: 所有非通配请求的键值对并集
    - tolerations: 按 key:operator:effect 去重;通配请求只贡献容忍
    - 结果按键排序,保证相同输入得到相同输出

    Returns:
        (node_selector, tolerations)
    """
    selector: Dict[str, str] = {}
    tolerations: Dict[str, Toleration] = {}

    for nc in nodechecks:
        if not nc.is_wildcard:
            selector.update(nc.spec.node_selector or {})
        for toleration in nc.spec.tolerations:
            tolerations.setdefault(toleration.identity(), toleration)

    merged = [tolerations[key].to_k8s() for key in sorted(tolerations)]
    return dict(sorted(selector.items())), merged


def build_daemonset(
    namespace: str,
    image: str,
    node_selector: Dict[str, str],
    tolerations: List[Dict],
) -> Dict[str, Any]:
    """生成 Agent DaemonSet"""
    volumes = [
        {"name": name, "hostPath": {"path": host_path}}
        for name, host_path, _ in HOST_MOUNTS
    ]
    mounts = [
        {"name": name, "mountPath": mount_path, "readOnly": True}
        for name, _, mount_path in HOST_MOUNTS
    ]

    container = {
        "name": CONTAINER_NAME,
        "image": image,
        "args": ["--mode=executor"],
        "env": [
            {"name": "NODE_NAME",
             "valueFrom": {"fieldRef": {"fieldPath": "spec.nodeName"}}},
            {"name": "WATCH_NAMESPACE",
             "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
        ],
        "ports": [
            {"name": "metrics", "containerPort": METRICS_PORT, "protocol": "TCP"},
            {"name": "health", "containerPort": HEALTH_PORT, "protocol": "TCP"},
        ],
        "livenessProbe": {
            "httpGet": {"path": "/healthz", "port": HEALTH_PORT},
            "initialDelaySeconds": 15, "periodSeconds": 20,
        },
        "readinessProbe": {
            "httpGet": {"path": "/readyz", "port": HEALTH_PORT},
            "initialDelaySeconds": 5, "periodSeconds": 10,
        },
        "resources": {
            "limits": {"cpu": "500m", "memory": "128Mi"},
            "requests": {"cpu": "10m", "memory": "64Mi"},
        },
        "securityContext": {"privileged": True, "runAsUser": 0},
        "volumeMounts": mounts,
    }

    pod_spec: Dict[str, Any] = {
        "serviceAccountName": SERVICE_ACCOUNT,
        "hostNetwork": True,
        "hostPID": True,
        "terminationGracePeriodSeconds": 10,
        "containers": [container],
        "volumes": volumes,
    }
    if node_selector:
        pod_spec["nodeSelector"] = dict(node_selector)
    if tolerations:
        pod_spec["tolerations"] = list(tolerations)

    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": {
            "name": DAEMONSET_NAME,
            "namespace": namespace,
            "labels": dict(APP_LABEL),
        },
        "spec": {
            "selector": {"matchLabels": dict(APP_LABEL)},
            "template": {
                "metadata": {"labels": dict(APP_LABEL)},
                "spec": pod_spec,
            },
        },
    }


def _pod_spec(daemonset: Dict[str, Any]) -> Dict[str, Any]:
    return ((daemonset.get("spec") or {}).get("template") or {}).get("spec") or {}


def _image(daemonset: Dict[str, Any]) -> str:
    for container in _pod_spec(daemonset).get("containers") or []:
        if container.get("name") == CONTAINER_NAME:
            return container.get("image", "")
    containers = _pod_spec(daemonset).get("containers") or []
    return containers[0].get("image", "") if containers else ""


def _toleration_keys(tolerations: List[Dict]) -> List[Tuple]:
    keys = []
    for t in tolerations or []:
        keys.append((t.get("key") or "", t.get("operator") or "", t.get("value") or "",
                     t.get("effect") or "", t.get("tolerationSeconds")))
    return sorted(keys, key=str)


def diff_daemonset(current: Dict[str, Any], desired: Dict[str, Any]) -> List[str]:
    """需要同步的字段

    只比较镜像、nodeSelector 和 tolerations;tolerations 按集合比较。

    Returns:
        不一致的字段名列表,为空表示无需更新
    """
    changed = []
    if _image(current) != _image(desired):
        changed.append("image")

    current_spec, desired_spec = _pod_spec(current), _pod_spec(desired)
    if (current_spec.get("nodeSelector") or {}) != (desired_spec.get("nodeSelector") or {}):
        changed.append("nodeSelector")
    if _toleration_keys(current_spec.get("tolerations")) != \
            _toleration_keys(desired_spec.get("tolerations")):
        changed.append("tolerations")
    return changed


def apply_desired(current: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    """以期望对象替换现有对象的 spec,保留 resourceVersion 以便原地 replace"""
    updated = dict(desired)
    metadata = dict(desired["metadata"])
    resource_version = (current.get("metadata") or {}).get("resourceVersion")
    if resource_version:
        metadata["resourceVersion"] = resource_version
    updated["metadata"] = metadata
    return updated
