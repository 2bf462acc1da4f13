# -*- coding: utf-8 -*-
"""把 NCM 里的元数据和封面写回解密后的音频文件"""

import logging
from typing import Optional

from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC, COMM, ID3, TALB, TIT2, TPE1, error as ID3Error

from .ncm import NcmInfo

log = logging.getLogger(__name__)


def detect_format(data: bytes) -> Optional[str]:
    if len(data) < 4:
        return None

    if data[:4] == b'fLaC':
        return 'flac'
    elif data[:3] == b'ID3':
        return 'mp3'
    elif data[0] == 0xff and (data[1] & 0xe0) == 0xe0:
        return 'mp3'
    elif data[:4] == b'OggS':
        return 'ogg'
    elif data[:4] == b'RIFF':
        return 'wav'
    elif len(data) > 8 and data[4:8] == b'ftyp':
        return 'm4a'

    return None


def detect_image_mime(data: bytes) -> str:
    if data[:3] == b'\xff\xd8\xff':
        return 'image/jpeg'
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return 'image/png'
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return 'image/gif'
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'image/webp'
    return 'application/octet-stream'


def _tag_flac(path: str, info: NcmInfo, cover: Optional[bytes], comment: Optional[str]):
    audio = FLAC(path)
    audio['title'] = info.name
    audio['artist'] = info.artist_names
    audio['album'] = info.album
    if comment:
        audio['description'] = comment
    if cover:
        pic = Picture()
        pic.type = 3
        pic.mime = detect_image_mime(cover)
        pic.desc = 'cover'
        pic.data = cover
        audio.clear_pictures()
        audio.add_picture(pic)
    audio.save()


def _tag_mp3(path: str, info: NcmInfo, cover: Optional[bytes], comment: Optional[str]):
    try:
        tags = ID3(path)
    except ID3Error:
        tags = ID3()
    tags.add(TIT2(encoding=3, text=[info.name]))
    tags.add(TPE1(encoding=3, text=info.artist_names))
    tags.add(TALB(encoding=3, text=[info.album]))
    if comment:
        tags.delall('COMM')
        tags.add(COMM(encoding=3, lang='XXX', desc='', text=[comment]))
    if cover:
        tags.delall('APIC')
        tags.add(APIC(encoding=3, mime=detect_image_mime(cover), type=3, desc='Cover', data=cover))
    tags.save(path)


def write_tags(path: str, info: NcmInfo, cover: Optional[bytes] = None,
               comment: Optional[str] = None) -> bool:
    """
    写入标题、艺人、专辑、注释和封面。

    按文件内容判断格式，只支持 FLAC 和 MP3；其他格式不改动并返回 False。
    """
    with open(path, 'rb') as f:
        fmt = detect_format(f.read(16))

    if fmt == 'flac':
        _tag_flac(path, info, cover, comment)
    elif fmt == 'mp3':
        _tag_mp3(path, info, cover, comment)
    else:
        log.debug(f"不支持写标签的格式: {fmt} ({path})")
        return False
    return True
