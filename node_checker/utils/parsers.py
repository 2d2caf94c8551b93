"""
数据解析和格式化工具

提供命令行输出中常见的数值、单位、百分比解析,
以及 Kubernetes 资源量 (Quantity) 的解析。
"""

import re
from typing import Dict, List, Optional


# Kubernetes 资源量后缀
_BINARY_SUFFIXES = {
    "Ki": 1024,
    "Mi": 1024 ** 2,
    "Gi": 1024 ** 3,
    "Ti": 1024 ** 4,
    "Pi": 1024 ** 5,
    "Ei": 1024 ** 6,
}

_DECIMAL_SUFFIXES = {
    "n": 1e-9,
    "u": 1e-6,
    "m": 1e-3,
    "k": 1e3,
    "K": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
}

_NUMBER_RE = re.compile(r"^([+-]?[0-9]*\.?[0-9]+(?:[eE][+-]?[0-9]+)?)(.*)$")


def parse_float(value, default: Optional[float] = None) -> Optional[float]:
    """宽松地解析浮点数

    Args:
        value: 字符串或数字
        default: 解析失败时返回的值

    Returns:
        解析结果,失败返回 default
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return default


def parse_int(value, default: Optional[int] = None) -> Optional[int]:
    """宽松地解析整数 (兼容 "12.0" 这类输出)"""
    number = parse_float(value)
    if number is None:
        return default
    return int(number)


def parse_percent(value: str) -> Optional[float]:
    """解析百分比字符串

    Example:
        parse_percent("85%")   # 85.0
        parse_percent(" 7.5 ") # 7.5
        parse_percent("-")     # None
    """
    if value is None:
        return None
    text = str(value).strip().rstrip("%").strip()
    if not text or text == "-":
        return None
    return parse_float(text)


def parse_size_to_gb(size_str: str) -> float:
    """解析容量字符串并换算为 GB

    支持 T/TB/TiB、G/GB/GiB、M/MB/MiB、K/KB/KiB 后缀,
    无单位时按 GB 处理。无法解析时返回 0。

    Args:
        size_str: 如 "10.5G"、"1024M"、"1T"、"<5.00g"

    Returns:
        GB 数值
    """
    text = (size_str or "").strip()
    if not text:
        return 0.0

    # pvs 在容量被截断时会输出 "<" 前缀
    text = text.lstrip("<>")

    size = 0.0
    unit = ""
    for i in range(len(text) - 1, -1, -1):
        if text[i].isdigit() or text[i] == ".":
            try:
                size = float(text[:i + 1])
            except ValueError:
                return 0.0
            unit = text[i + 1:].upper()
            break

    if size == 0:
        return 0.0

    if unit in ("T", "TB", "TIB"):
        return size * 1024
    if unit in ("G", "GB", "GIB"):
        return size
    if unit in ("M", "MB", "MIB"):
        return size / 1024
    if unit in ("K", "KB", "KIB"):
        return size / (1024 * 1024)
    return size


def parse_memory_size(size_str: str) -> int:
    """解析 free/top 风格的内存字符串为字节数

    Args:
        size_str: 如 "8.2G"、"1024M"、"512K"、"8.2Gi"

    Returns:
        字节数

    Raises:
        ValueError: 无法解析
    """
    text = (size_str or "").strip().upper()
    if text.endswith("I"):
        text = text[:-1]

    multiplier = 1
    if text.endswith("G"):
        multiplier = 1024 ** 3
        text = text[:-1]
    elif text.endswith("M"):
        multiplier = 1024 ** 2
        text = text[:-1]
    elif text.endswith("K"):
        multiplier = 1024
        text = text[:-1]

    return int(float(text) * multiplier)


def parse_cpu_quantity(quantity) -> int:
    """解析 Kubernetes CPU 资源量为毫核

    Example:
        parse_cpu_quantity("500m")  # 500
        parse_cpu_quantity("2")     # 2000
        parse_cpu_quantity("250000n")  # 0 (向下取整)
    """
    if quantity is None or quantity == "":
        return 0
    if isinstance(quantity, (int, float)):
        return int(quantity * 1000)

    match = _NUMBER_RE.match(str(quantity).strip())
    if not match:
        return 0
    number = float(match.group(1))
    suffix = match.group(2)

    if suffix in _BINARY_SUFFIXES:
        return int(number * _BINARY_SUFFIXES[suffix] * 1000)
    if suffix in _DECIMAL_SUFFIXES:
        return int(number * _DECIMAL_SUFFIXES[suffix] * 1000)
    return int(number * 1000)


def parse_memory_quantity(quantity) -> int:
    """解析 Kubernetes 内存资源量为字节数

    Example:
        parse_memory_quantity("128Mi")  # 134217728
        parse_memory_quantity("1G")     # 1000000000
        parse_memory_quantity("16318784Ki")
    """
    if quantity is None or quantity == "":
        return 0
    if isinstance(quantity, (int, float)):
        return int(quantity)

    match = _NUMBER_RE.match(str(quantity).strip())
    if not match:
        return 0
    number = float(match.group(1))
    suffix = match.group(2)

    if suffix in _BINARY_SUFFIXES:
        return int(number * _BINARY_SUFFIXES[suffix])
    if suffix in _DECIMAL_SUFFIXES:
        return int(number * _DECIMAL_SUFFIXES[suffix])
    return int(number)


def split_lines(output: str) -> List[str]:
    """按行拆分并去掉空行"""
    if not output:
        return []
    return [line for line in output.splitlines() if line.strip()]


def find_last_header(lines: List[str], *markers: str) -> int:
    """查找最后一个包含全部标记的表头行

    iostat 等工具会多次输出表头,第一次采样是开机以来的平均值,
    只有最后一组数据反映当前状态。

    Args:
        lines: 输出行
        markers: 表头必须包含的列名

    Returns:
        表头行下标,未找到返回 -1
    """
    for index in range(len(lines) - 1, -1, -1):
        if all(marker in lines[index] for marker in markers):
            return index
    return -1


def parse_key_value_lines(output: str, separator: str = ":") -> Dict[str, str]:
    """解析 "Key: Value" 形式的多行输出

    Example:
        parse_key_value_lines("Leap status     : Normal")
        # {"Leap status": "Normal"}
    """
    result = {}
    for line in split_lines(output):
        if separator not in line:
            continue
        key, _, value = line.partition(separator)
        key = key.strip()
        if key:
            result[key] = value.strip()
    return result


def truncate(text: str, max_len: int = 2000) -> str:
    """截断过长文本"""
    if text is None:
        return ""
    return text if len(text) <= max_len else text[:max_len] + "..."


def cap_samples(items: List, limit: int = 10) -> List:
    """去重并限制样本数量,保留原始顺序"""
    seen = set()
    samples = []
    for item in items:
        key = item if isinstance(item, str) else repr(item)
        if key in seen:
            continue
        seen.add(key)
        samples.append(item)
        if len(samples) >= limit:
            break
    return samples
