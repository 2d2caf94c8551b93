"""
运行配置

来源优先级 (高 → 低):
1. 显式传入的覆盖项 (CLI 参数)
2. YAML 配置文件 (--config)
3. 环境变量 (NODE_NAME / WATCH_NAMESPACE / NODE_CHECKER_*,.env 由 CLI 加载)
4. 字段默认值
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .utils.errors import ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "NODE_CHECKER_"

DEFAULT_NAMESPACE = "node-check-operator-system"
DEFAULT_IMAGE = "quay.io/rh_ee_afilice/node-check-operator:v1.0.7"

# 不带前缀的环境变量 (由 DaemonSet 的 downward API 注入)
_PLAIN_ENV = {
    "node_name": "NODE_NAME",
    "namespace": "WATCH_NAMESPACE",
}


class Settings(BaseModel):
    """node-checker 配置"""

    namespace: str = DEFAULT_NAMESPACE
    node_name: str = ""
    image: str = DEFAULT_IMAGE
    host_root: str = "/host/root"
    command_timeout: float = Field(30.0, gt=0)
    probe_timeout: float = Field(60.0, gt=0)
    max_workers: int = Field(8, ge=1)
    reconcile_interval: float = Field(30.0, gt=0)
    metrics_port: int = Field(8080, ge=0, le=65535)
    health_port: int = Field(8081, ge=0, le=65535)
    dashboard_port: int = Field(31682, ge=0, le=65535)
    state_file: str = "/tmp/node-checker/last-results.json"
    kube_context: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """从环境变量收集配置项 (未出现的字段不返回)"""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            env_key = f"{ENV_PREFIX}{name.upper()}"
            if env_key in environ and environ[env_key] != "":
                values[name] = environ[env_key]
            elif name in _PLAIN_ENV and environ.get(_PLAIN_ENV[name]):
                values[name] = environ[_PLAIN_ENV[name]]
        return values

    @classmethod
    def load(
        cls,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> "Settings":
        """合并各来源并校验

        Args:
            config_file: YAML 配置文件路径
            overrides: 最高优先级的覆盖项,值为 None 的项被忽略
            environ: 环境变量 (默认 os.environ)

        Raises:
            ValidationError: 配置文件无法读取或字段不合法

        Example:
            settings = Settings.load("/etc/node-checker.yaml", {"log_level": "DEBUG"})
        """
        values = cls.from_env(environ)

        if config_file:
            values.update(_read_yaml(config_file))

        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value

        try:
            settings = cls.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(
                f"invalid configuration: {e.errors()[0].get('msg', e)}",
                field=str(e.errors()[0].get("loc", ("",))[0]),
            ) from e

        logger.debug("配置已加载: namespace=%s node=%s", settings.namespace, settings.node_name)
        return settings


def _read_yaml(path: str) -> Dict[str, Any]:
    file = Path(path)
    try:
        data = yaml.safe_load(file.read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationError(f"cannot read config file {path}: {e}", field="config") from e
    except yaml.YAMLError as e:
        raise ValidationError(f"invalid YAML in {path}: {e}", field="config") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"config file {path} must contain a mapping", field="config")

    # 允许 kebab-case 键
    return {str(k).replace("-", "_"): v for k, v in data.items()}
