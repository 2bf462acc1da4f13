# -*- coding: utf-8 -*-
"""NCM 解码过程中抛出的异常"""


class NcmError(Exception):
    """所有 NCM 解码错误的基类"""


class InvalidFileType(NcmError):
    """文件头不是 CTENFDAM"""


class InvalidKeyLength(NcmError):
    """密钥区长度字段读取不完整"""


class InvalidInfoLength(NcmError):
    """元数据区长度字段读取不完整"""


class InvalidImageLength(NcmError):
    """封面区长度字段读取不完整"""


class DecryptError(NcmError):
    """AES 解密失败（未按块对齐或填充错误）"""


class InfoDecodeError(NcmError):
    """元数据不是预期的形状：base64、解密、UTF-8 或字段校验失败"""


class TruncatedSectionError(NcmError):
    """某个区段实际可读的字节数少于记录的长度"""

    def __init__(self, name, expected, actual):
        super().__init__(f"{name} 区段被截断: 需要 {expected} 字节, 只读到 {actual} 字节")
        self.name = name
        self.expected = expected
        self.actual = actual
