# -*- coding: utf-8 -*-

import binascii
import functools
from typing import Callable, Iterator, List, Sequence

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from .errors import DecryptError

# 固定密钥
HEADER_KEY = binascii.a2b_hex('687A4852416D736F356B496E62617857')
INFO_KEY = binascii.a2b_hex('2331346C6A6B5F215C5D2630553C2728')

KEY_XOR = 0x64
INFO_XOR = 0x63

# 音频按 0x8000 字节分块处理；0x8000 是 256 的整数倍，每块的密钥流相同
CHUNK_SIZE = 0x8000


def aes_ecb_decrypt(data: bytes, key: bytes) -> bytes:
    """AES-128-ECB 解密并去除 PKCS#7 填充"""
    cipher = AES.new(key, AES.MODE_ECB)
    try:
        return unpad(cipher.decrypt(data), AES.block_size)
    except ValueError as e:
        raise DecryptError(f"AES 解密失败: {e}") from e


def xor_bytes(data: bytes, num: int) -> bytes:
    """每个字节与同一个常量异或，用大整数一次完成"""
    if not data:
        return b''
    b2i = functools.partial(int.from_bytes, byteorder='little')
    mask = bytes([num]) * len(data)
    return (b2i(data) ^ b2i(mask)).to_bytes(len(data), 'little')


def build_key_box(key: bytes) -> List[int]:
    """
    用 RC4 的密钥调度算法生成 256 项置换表 (key box)。
    只做交换，结果一定是 0..255 的一个排列。
    """
    if not key:
        raise ValueError("key must not be empty")

    key_box = list(range(256))
    key_len = len(key)
    j = 0
    for i in range(256):
        j = (j + key_box[i] + key[i % key_len]) & 0xff
        key_box[i], key_box[j] = key_box[j], key_box[i]
    return key_box


def keystream(key_box: Sequence[int]) -> bytes:
    """
    一个周期（256 字节）的密钥流。
    载荷中位置 p 的字节对应 keystream(key_box)[p % 256]。
    """
    stream = bytearray(256)
    for p in range(256):
        j = (p + 1) & 0xff
        stream[p] = key_box[(key_box[j] + key_box[(key_box[j] + j) & 0xff]) & 0xff]
    return bytes(stream)


def decrypt_chunk(chunk: bytes, stream: bytes, offset: int = 0) -> bytes:
    """
    解密载荷中从 offset 开始的一段。
    offset 是相对整个音频载荷起点的位置，不是相对当前块。
    """
    if not chunk:
        return b''
    shift = offset & 0xff
    period = stream[shift:] + stream[:shift]
    repeats = len(chunk) // 256 + 1
    mask = (period * repeats)[:len(chunk)]
    b2i = functools.partial(int.from_bytes, byteorder='little')
    return (b2i(chunk) ^ b2i(mask)).to_bytes(len(chunk), 'little')


def iter_decrypt(read: Callable[[int, int], bytes], stream: bytes,
                 chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """
    逐块读取并解密音频载荷。
    read(offset, size) 返回载荷中从 offset 开始的至多 size 字节，读到末尾时返回空串。
    """
    offset = 0
    while True:
        chunk = read(offset, chunk_size)
        if not chunk:
            break
        yield decrypt_chunk(chunk, stream, offset)
        offset += len(chunk)


def decrypt_audio(data: bytes, key_box: Sequence[int]) -> bytes:
    """按 0x8000 字节分块解密整个音频载荷"""
    return b''.join(iter_decrypt(lambda offset, size: data[offset:offset + size], keystream(key_box)))
