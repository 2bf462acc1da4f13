# -*- coding: utf-8 -*-
"""网易云音乐 NCM 文件解码"""

from .crypto import build_key_box, decrypt_audio
from .errors import (
    DecryptError, InfoDecodeError, InvalidFileType, InvalidImageLength,
    InvalidInfoLength, InvalidKeyLength, NcmError, TruncatedSectionError,
)
from .ncm import Ncmdump, NcmInfo, Section
from .tags import detect_format, write_tags

__version__ = '0.1.0'
