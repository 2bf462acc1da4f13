#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
NCM 容器解析

文件结构（整数均为小端）:
    8 字节魔数 CTENFDAM + 2 字节保留
    4 字节长度 + 密钥区      (异或 0x64, AES-ECB)
    4 字节长度 + 元数据区    (异或 0x63, base64, AES-ECB)
    9 字节间隔              (不解析)
    4 字节长度 + 封面区      (原样)
    音频区                  (key box 密钥流异或) 直到文件末尾
"""

import base64
import binascii
import json
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, List, NamedTuple, Optional, Tuple

from .crypto import (
    CHUNK_SIZE, HEADER_KEY, INFO_KEY, INFO_XOR, KEY_XOR,
    aes_ecb_decrypt, build_key_box, iter_decrypt, keystream, xor_bytes,
)
from .errors import (
    DecryptError, InfoDecodeError, InvalidFileType, InvalidImageLength,
    InvalidInfoLength, InvalidKeyLength, TruncatedSectionError,
)

log = logging.getLogger(__name__)

MAGIC_HEX = b'4354454e4644414d'
HEADER_SIZE = 10
GAP_SIZE = 9

# 解密后需要丢弃的固定前缀
KEY_PREFIX = 17     # b'neteasecloudmusic'
INFO_TAG = 22       # b"163 key(Don't modify):"
INFO_PREFIX = 6     # b'music:'


class Section(NamedTuple):
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < 1 << 64


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


@dataclass
class NcmInfo:
    """歌曲元数据，字段名与 JSON 中的键不同时见 WIRE_NAMES"""
    name: str
    id: int
    album: str
    artist: List[Tuple[str, int]]
    bitrate: int
    duration: int
    format: str
    mv_id: Optional[int] = None
    alias: Optional[List[str]] = None

    WIRE_NAMES = {'name': 'musicName', 'id': 'musicId', 'mv_id': 'mvId'}

    @property
    def artist_names(self) -> List[str]:
        return [name for name, _ in self.artist]

    @classmethod
    def from_dict(cls, data: dict) -> 'NcmInfo':
        """从 JSON 对象构造；必填字段缺失或类型不符时抛 InfoDecodeError，多余的键忽略"""
        if not isinstance(data, dict):
            raise InfoDecodeError("元数据不是 JSON 对象")

        def field(name, check, required=True):
            key = cls.WIRE_NAMES.get(name, name)
            value = data.get(key)
            if value is None:
                if required:
                    raise InfoDecodeError(f"缺少字段: {key}")
                return None
            if not check(value):
                raise InfoDecodeError(f"字段类型错误: {key}={value!r}")
            return value

        artist = field('artist', lambda v: isinstance(v, list) and all(
            isinstance(a, list) and len(a) == 2 and isinstance(a[0], str) and _is_int(a[1])
            for a in v))

        return cls(
            name=field('name', lambda v: isinstance(v, str)),
            id=field('id', _is_int),
            album=field('album', lambda v: isinstance(v, str)),
            artist=[(a[0], a[1]) for a in artist],
            bitrate=field('bitrate', _is_int),
            duration=field('duration', _is_int),
            format=field('format', lambda v: isinstance(v, str)),
            mv_id=field('mv_id', _is_int, required=False),
            alias=field('alias', _is_str_list, required=False),
        )

    @classmethod
    def from_json(cls, text: str) -> 'NcmInfo':
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InfoDecodeError(f"元数据不是合法 JSON: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        """还原为 JSON 中的键名；可选字段为 None 时省略"""
        data = {
            'musicName': self.name,
            'musicId': self.id,
            'album': self.album,
            'artist': [[name, aid] for name, aid in self.artist],
            'bitrate': self.bitrate,
            'duration': self.duration,
            'format': self.format,
        }
        if self.mv_id is not None:
            data['mvId'] = self.mv_id
        if self.alias is not None:
            data['alias'] = list(self.alias)
        return data


class Ncmdump:
    """
    已建立区段索引的 NCM 容器。

    构造时只校验文件头并记录各区段的起点和长度，不读取区段内容；
    之后每个 get_* 方法都会重新定位到对应区段，互不依赖，可重复调用。
    持有的数据源同一时间只能被一个线程使用。
    """

    def __init__(self, reader: BinaryIO, key: Section, info: Section, image: Section):
        self.reader = reader
        self.key = key
        self.info = info
        self.image = image

    @staticmethod
    def _read_length(reader: BinaryIO, error):
        buf = reader.read(4)
        if len(buf) != 4:
            raise error(f"长度字段只读到 {len(buf)} 字节")
        return struct.unpack('<I', buf)[0]

    @classmethod
    def from_reader(cls, reader: BinaryIO) -> 'Ncmdump':
        """从可 seek 的二进制流构造，例如打开的文件或 io.BytesIO"""
        header = reader.read(HEADER_SIZE)
        if len(header) != HEADER_SIZE or binascii.b2a_hex(header[:8]) != MAGIC_HEX:
            raise InvalidFileType("无效的NCM文件头")

        key_length = cls._read_length(reader, InvalidKeyLength)
        key = Section(reader.tell(), key_length)
        reader.seek(key_length, 1)

        info_length = cls._read_length(reader, InvalidInfoLength)
        info = Section(reader.tell(), info_length)
        reader.seek(info_length, 1)
        reader.seek(GAP_SIZE, 1)

        image_length = cls._read_length(reader, InvalidImageLength)
        image = Section(reader.tell(), image_length)

        log.debug(f"区段: key={key} info={info} image={image}")
        return cls(reader, key, info, image)

    @classmethod
    def open(cls, path) -> 'Ncmdump':
        f = open(Path(path), 'rb')
        try:
            return cls.from_reader(f)
        except BaseException:
            f.close()
            raise

    def close(self):
        self.reader.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def audio_start(self) -> int:
        return self.image.end

    def _get_bytes(self, section: Section, name: str) -> bytes:
        self.reader.seek(section.start)
        data = self.reader.read(section.length)
        if len(data) != section.length:
            raise TruncatedSectionError(name, section.length, len(data))
        return data

    def get_key(self) -> bytes:
        """解出音频密钥（去掉 17 字节前缀后的部分）"""
        data = xor_bytes(self._get_bytes(self.key, 'key'), KEY_XOR)
        key = aes_ecb_decrypt(data, HEADER_KEY)[KEY_PREFIX:]
        if not key:
            raise DecryptError("解密后的音频密钥为空")
        log.debug(f"密钥长度: {len(key)} 字节")
        return key

    def get_163key(self) -> str:
        """元数据区异或后的原文，即客户端写进注释里的 "163 key(Don't modify):..." """
        data = xor_bytes(self._get_bytes(self.info, 'info'), INFO_XOR)
        try:
            return data.decode('ascii')
        except UnicodeDecodeError as e:
            raise InfoDecodeError("163 key 不是 ASCII 文本") from e

    def get_info(self) -> NcmInfo:
        data = xor_bytes(self._get_bytes(self.info, 'info'), INFO_XOR)
        try:
            data = base64.b64decode(data[INFO_TAG:], validate=True)
        except binascii.Error as e:
            raise InfoDecodeError(f"base64 解码失败: {e}") from e
        try:
            data = aes_ecb_decrypt(data, INFO_KEY)
        except DecryptError as e:
            raise InfoDecodeError(str(e)) from e
        try:
            text = data[INFO_PREFIX:].decode('utf-8')
        except UnicodeDecodeError as e:
            raise InfoDecodeError("元数据不是 UTF-8 文本") from e
        return NcmInfo.from_json(text)

    def get_image(self) -> bytes:
        return self._get_bytes(self.image, 'image')

    def _read_audio(self, offset: int, size: int) -> bytes:
        # 每次都重新定位，调用方在两次迭代之间读别的区段也不受影响
        self.reader.seek(self.audio_start + offset)
        return self.reader.read(size)

    def iter_data(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """逐块产出解密后的音频，块内位置按整个载荷的偏移计算"""
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        stream = keystream(build_key_box(self.get_key()))
        return iter_decrypt(self._read_audio, stream, chunk_size)

    def get_data(self) -> bytes:
        return b''.join(self.iter_data())
