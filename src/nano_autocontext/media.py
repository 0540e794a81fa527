# -*- coding: utf-8 -*-
"""
多媒体模块 - 处理图片、音频、视频的来源（Source）

格式化器在格式化时需要把 Source 转换成各个 API 能接受的形式：
- 远程 URL：原样传递
- 本地文件：转换为 file:// 绝对路径（DashScope），或 data URL（OpenAI）
- base64 数据：包装成 data:<mediaType>;base64,<data>

学习要点：
- 这里的函数都是纯函数（读取文件除外），同样的输入得到同样的输出
- base64 数据写入临时文件时使用内容哈希作为文件名，保证多次格式化结果一致
"""

import base64
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Literal

import structlog

from .exception import FormatError
from .message import Source

logger = structlog.get_logger(__name__)

MediaKind = Literal["image", "audio", "video"]

# 文件大小限制
WARN_SIZE_BYTES = 10 * 1024 * 1024  # 10MB
MAX_SIZE_BYTES = 50 * 1024 * 1024  # 50MB

SUPPORTED_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "image": ("png", "jpg", "jpeg", "gif", "webp", "heic", "heif"),
    "audio": ("wav", "mp3"),
    "video": ("mp4", "mpeg", "mpg", "mov", "avi", "webm", "wmv", "flv", "3gp", "3gpp"),
}

_MEDIA_TYPES = {
    # 图片
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    # 音频
    "mp3": "audio/mp3",
    "wav": "audio/wav",
    "aiff": "audio/aiff",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    # 视频
    "mp4": "video/mp4",
    "mpeg": "video/mpeg",
    "mpg": "video/mpeg",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "webm": "video/webm",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "3gp": "video/3gpp",
    "3gpp": "video/3gpp",
}

_REMOTE_PREFIXES = ("http://", "https://", "ftp://", "file://", "data:")


def is_local_file(url: str) -> bool:
    """判断是否为本地文件路径（没有协议前缀）"""
    if not url or not url.strip():
        return False
    return not url.startswith(_REMOTE_PREFIXES)


def get_extension(path: str) -> str:
    """提取文件扩展名（小写，不含点）"""
    name = path.replace("\\", "/").rsplit("/", 1)[-1]
    # 去掉 URL 查询参数
    name = name.split("?", 1)[0]
    if "." not in name or name.endswith("."):
        return ""
    return name.rsplit(".", 1)[-1].lower()


def determine_media_type(path: str) -> str:
    """根据扩展名推断 MIME 类型"""
    return _MEDIA_TYPES.get(get_extension(path), "application/octet-stream")


def validate_extension(url: str, kind: MediaKind) -> None:
    """校验文件扩展名是否受支持

    Raises:
        ValueError: 扩展名不在支持列表中
    """
    supported = SUPPORTED_EXTENSIONS[kind]
    if get_extension(url) not in supported:
        raise ValueError(f'"{url}" 的扩展名不受支持，{kind} 只支持 {list(supported)}')


def check_file_size(path: str) -> None:
    """读取文件前检查大小"""
    size = os.path.getsize(path)
    if size > MAX_SIZE_BYTES:
        raise OSError(f"文件过大: {size} 字节 (上限 {MAX_SIZE_BYTES})")
    if size > WARN_SIZE_BYTES:
        logger.warning("检测到大文件", path=path, size=size)


def file_to_base64(path: str) -> str:
    """把本地文件读成 base64 字符串"""
    check_file_size(path)
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


def to_file_protocol_url(path: str) -> str:
    """把本地路径转换为 file:// 绝对路径

    Raises:
        FileNotFoundError: 文件不存在
    """
    absolute = Path(path).expanduser().absolute()
    if not absolute.exists():
        raise FileNotFoundError(f"文件不存在: {path}")
    return f"file://{absolute.as_posix()}"


def to_data_url(media_type: str, data: str) -> str:
    """构造 data URL"""
    return f"data:{media_type};base64,{data}"


def file_to_data_url(path: str) -> str:
    """把本地文件转换为 data URL"""
    return to_data_url(determine_media_type(path), file_to_base64(path))


def _check_source(source: object) -> str:
    """校验 Source 结构，返回其类型

    Raises:
        FormatError: 既不是 URL 也不是 base64 的来源
    """
    if not isinstance(source, dict):
        raise FormatError(f"Source 必须是字典，但收到 {type(source)}")

    source_type = source.get("type")
    if source_type == "url" and isinstance(source.get("url"), str):
        return "url"
    if (
        source_type == "base64"
        and isinstance(source.get("data"), str)
        and isinstance(source.get("media_type"), str)
    ):
        return "base64"
    raise FormatError(f"不支持的 Source: {source!r}，必须是 url 或 base64")


def source_to_url(
    source: Source,
    kind: MediaKind,
    local_mode: Literal["file_url", "data_url"] = "file_url",
    validate: bool = True,
) -> str:
    """把 Source 转换为 API 可用的 URL 字符串

    Args:
        source: 媒体来源
        kind: 媒体类型，用于扩展名校验
        local_mode: 本地文件的处理方式
            - "file_url": 转换为 file:// 绝对路径
            - "data_url": 读取文件并转换为 data URL
        validate: 是否校验扩展名

    Returns:
        URL 字符串

    Raises:
        FormatError: Source 结构错误
        ValueError: 扩展名不受支持
        OSError: 本地文件不存在或无法读取
    """
    source_type = _check_source(source)

    if source_type == "base64":
        return to_data_url(source["media_type"], source["data"])

    url = source["url"]
    if validate:
        validate_extension(url, kind)

    if not is_local_file(url):
        return url

    if local_mode == "data_url":
        return file_to_data_url(url)
    return to_file_protocol_url(url)


def save_base64_to_temp_file(media_type: str, data: str) -> str:
    """把 base64 数据保存到临时文件并返回绝对路径

    文件名由内容哈希决定，同样的数据总是得到同样的路径。
    """
    extension = media_type.split("/")[-1] if "/" in media_type else media_type
    digest = hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]
    path = Path(tempfile.gettempdir()) / f"agentscope_{digest}.{extension}"

    if not path.exists():
        path.write_bytes(base64.b64decode(data))
        logger.debug("base64 数据已写入临时文件", path=str(path))

    return str(path.absolute())


def source_location(source: Source) -> str:
    """获取媒体的可读位置，用于文本化的工具结果

    - URL / 本地路径：原样返回
    - base64：写入临时文件后返回文件路径
    """
    if _check_source(source) == "url":
        return source["url"]
    return save_base64_to_temp_file(source["media_type"], source["data"])


def audio_format(source: Source) -> str:
    """推断 OpenAI input_audio 的 format 字段（wav 或 mp3）"""
    if _check_source(source) == "base64":
        hint = source["media_type"]
    else:
        hint = get_extension(source["url"])
    return "wav" if "wav" in hint else "mp3"
