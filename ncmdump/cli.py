#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
NCM 解码命令行

    ncmdump song.ncm
    ncmdump ~/Music/ncm -r -o ~/Music/decoded
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from mutagen import MutagenError
from tqdm import tqdm

from .errors import NcmError
from .ncm import Ncmdump, NcmInfo
from .tags import detect_format, write_tags

log = logging.getLogger(__name__)


@dataclass
class DumpOptions:
    output: Optional[Path] = None
    force: bool = False
    tag: bool = True
    recursive: bool = False


# 单个文件的处理结果
DONE, SKIPPED, FAILED = 'done', 'skipped', 'failed'


def output_path(ncm_path: Path, fmt: str, options: DumpOptions) -> Path:
    out_dir = options.output if options.output else ncm_path.parent
    return out_dir / f"{ncm_path.stem}.{fmt}"


def decode_file(ncm_path: Path, options: DumpOptions) -> str:
    """解码一个 NCM 文件；错误记日志后返回 FAILED，不向外抛"""
    try:
        with Ncmdump.open(ncm_path) as ncm:
            info: Optional[NcmInfo] = None
            try:
                info = ncm.get_info()
            except NcmError as e:
                log.warning(f"⚠️ 无法解析元数据，按音频内容判断格式: {ncm_path.name} ({e})")

            chunks = ncm.iter_data()
            first = next(chunks, b'')
            fmt = detect_format(first) or (info.format if info else None) or 'mp3'
            target = output_path(ncm_path, fmt, options)

            if target.exists() and not options.force:
                log.info(f"↪️  已存在，跳过: {target}")
                return SKIPPED

            target.parent.mkdir(parents=True, exist_ok=True)
            # 先写临时文件，标签写完再改名；中途失败不留下会被当成“已存在”的半成品
            part = target.with_name(target.name + '.part')
            total_size = 0
            try:
                with open(part, 'wb') as out:
                    out.write(first)
                    total_size += len(first)
                    for chunk in chunks:
                        out.write(chunk)
                        total_size += len(chunk)

                if options.tag and info is not None:
                    write_tags(str(part), info, ncm.get_image() or None, ncm.get_163key())
                part.replace(target)
            except BaseException:
                if part.exists():
                    part.unlink()
                raise

    except (NcmError, MutagenError, OSError) as e:
        log.error(f"❌ 解码失败 ({ncm_path.name}): {e}")
        return FAILED

    log.info(f"✅ {ncm_path.name} → {target.name} ({total_size / 1024 / 1024:.2f} MB)")
    return DONE


def collect_files(paths: Iterable[Path], recursive: bool = False) -> List[Path]:
    files = []
    for p in paths:
        if p.is_dir():
            found = p.rglob('*.ncm') if recursive else p.glob('*.ncm')
            files.extend(sorted(found))
        elif p.exists():
            files.append(p)
        else:
            log.error(f"❌ 路径不存在: {p}")
    return files


def decode_all(files: List[Path], options: DumpOptions) -> dict:
    counts = {DONE: 0, SKIPPED: 0, FAILED: 0}
    for ncm_file in tqdm(files, desc="解码 NCM", disable=len(files) < 2):
        counts[decode_file(ncm_file, options)] += 1
    return counts


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog='ncmdump', description="NCM 解码器")
    ap.add_argument('path', nargs='+', type=Path, help='NCM文件或包含NCM文件的目录')
    ap.add_argument('-o', '--output', type=Path, default=None, help='输出目录（默认与源文件相同）')
    ap.add_argument('-r', '--recursive', action='store_true', help='递归扫描子目录')
    ap.add_argument('-f', '--force', action='store_true', help='覆盖已存在的输出文件')
    ap.add_argument('--no-tag', action='store_true', help='不写入元数据和封面')
    verbosity = ap.add_mutually_exclusive_group()
    verbosity.add_argument('-q', '--quiet', action='store_true', help='只输出警告和错误')
    verbosity.add_argument('-v', '--verbose', action='store_true', help='输出调试信息')
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.INFO
    if args.quiet:
        level = logging.WARNING
    elif args.verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    options = DumpOptions(output=args.output, force=args.force,
                          tag=not args.no_tag, recursive=args.recursive)

    files = collect_files(args.path, options.recursive)
    missing = [p for p in args.path if not p.exists()]
    if not files:
        log.info("没有找到NCM文件")
        return 1

    counts = decode_all(files, options)
    counts[FAILED] += len(missing)
    log.info(f"完成: {counts[DONE]}/{len(files)} 成功 | 跳过: {counts[SKIPPED]} | 失败: {counts[FAILED]}")
    return 1 if counts[FAILED] else 0


if __name__ == '__main__':
    sys.exit(main())
