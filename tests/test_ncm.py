import base64
import io
import struct
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from ncmdump import (
    DecryptError, InfoDecodeError, InvalidFileType, InvalidImageLength,
    InvalidInfoLength, InvalidKeyLength, Ncmdump, NcmInfo, TruncatedSectionError,
)

from ncm_builder import (
    AUDIO_HEAD, AUDIO_TAIL, IMAGE_HEAD, IMAGE_TAIL, REF_INFO, REF_KEY,
    build_ncm, info_block, info_block_from_plaintext, key_block, ref_audio,
)

EXPECTED_INFO = NcmInfo(
    name="寒鸦少年",
    id=1305366556,
    album="寒鸦少年",
    artist=[("华晨宇", 861777)],
    bitrate=923378,
    duration=315146,
    format="flac",
    mv_id=0,
    alias=["电视剧《斗破苍穹》主题曲"],
)


def open_bytes(data):
    return Ncmdump.from_reader(io.BytesIO(data))


class ReferenceContainerTests(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.data = build_ncm()

    def setUp(self):
        self.ncm = open_bytes(self.data)

    def test_sections(self):
        key_len = len(key_block())
        info_len = len(info_block())
        self.assertEqual(self.ncm.key, (14, key_len))
        self.assertEqual(self.ncm.info, (14 + key_len + 4, info_len))
        self.assertEqual(self.ncm.image.start, self.ncm.info.end + 9 + 4)
        self.assertEqual(self.ncm.image.length, 39009)
        self.assertEqual(self.ncm.audio_start, len(self.data) - 61440)

    def test_get_key(self):
        self.assertEqual(self.ncm.get_key(), REF_KEY)

    def test_get_info(self):
        self.assertEqual(self.ncm.get_info(), EXPECTED_INFO)

    def test_get_163key(self):
        self.assertTrue(self.ncm.get_163key().startswith("163 key(Don't modify):"))

    def test_get_image(self):
        image = self.ncm.get_image()
        self.assertEqual(len(image), 39009)
        self.assertEqual(image[:16], IMAGE_HEAD)
        self.assertEqual(image[38993:], IMAGE_TAIL)

    def test_get_data(self):
        data = self.ncm.get_data()
        self.assertEqual(len(data), 61440)
        self.assertEqual(data[:16], AUDIO_HEAD)
        self.assertEqual(data[61424:], AUDIO_TAIL)
        self.assertEqual(data, ref_audio())

    def test_repeated_calls(self):
        self.assertEqual(self.ncm.get_key(), self.ncm.get_key())
        self.assertEqual(self.ncm.get_info(), self.ncm.get_info())
        self.assertEqual(self.ncm.get_image(), self.ncm.get_image())
        self.assertEqual(self.ncm.get_data(), self.ncm.get_data())

    def test_iter_data_chunks(self):
        chunks = list(self.ncm.iter_data(chunk_size=1000))
        self.assertEqual(len(chunks), 62)
        self.assertEqual(b''.join(chunks), ref_audio())

    def test_iter_data_interleaved(self):
        chunks = []
        for chunk in self.ncm.iter_data(chunk_size=4096):
            self.ncm.get_image()
            chunks.append(chunk)
        self.assertEqual(b''.join(chunks), ref_audio())

    def test_iter_data_bad_chunk_size(self):
        for size in (0, -1):
            with self.assertRaises(ValueError):
                self.ncm.iter_data(chunk_size=size)


class HeaderTests(unittest.TestCase):

    def test_short_input(self):
        for data in (b'', b'CTENFDAM', b'CTENFDAM\x01'):
            with self.assertRaises(InvalidFileType):
                open_bytes(data)

    def test_bad_magic(self):
        with self.assertRaises(InvalidFileType):
            open_bytes(b'CTENFDAN\x01\x70' + build_ncm()[10:])
        with self.assertRaises(InvalidFileType):
            open_bytes(b'fLaC' + b'\x00' * 100)

    def test_missing_key_length(self):
        with self.assertRaises(InvalidKeyLength):
            open_bytes(b'CTENFDAM\x01\x70\x10\x00')

    def test_missing_info_length(self):
        data = b'CTENFDAM\x01\x70' + struct.pack('<I', 4) + b'abcd' + b'\x00\x00'
        with self.assertRaises(InvalidInfoLength):
            open_bytes(data)

    def test_missing_image_length(self):
        data = (b'CTENFDAM\x01\x70' + struct.pack('<I', 0) + struct.pack('<I', 2) + b'ab'
                + b'\x00' * 9 + b'\x01')
        with self.assertRaises(InvalidImageLength):
            open_bytes(data)

    def test_key_longer_than_file(self):
        data = b'CTENFDAM\x01\x70' + struct.pack('<I', 1000) + b'\x00' * 10
        with self.assertRaises(InvalidInfoLength):
            open_bytes(data)

    def test_empty_sections(self):
        data = b'CTENFDAM\x01\x70' + b'\x00' * 4 + b'\x00' * 4 + b'\x00' * 9 + b'\x00' * 4
        ncm = open_bytes(data)
        self.assertEqual(ncm.get_image(), b'')
        self.assertEqual(ncm.audio_start, len(data))


class SectionErrorTests(unittest.TestCase):

    def test_truncated_image(self):
        data = build_ncm(audio=b'')
        ncm = open_bytes(data[:-100])
        with self.assertRaises(TruncatedSectionError) as ctx:
            ncm.get_image()
        self.assertEqual(ctx.exception.expected, 39009)
        self.assertEqual(ctx.exception.actual, 39009 - 100)

    def test_truncated_key(self):
        buf = io.BytesIO(build_ncm())
        ncm = Ncmdump.from_reader(buf)
        buf.truncate(ncm.key.start + 5)
        with self.assertRaises(TruncatedSectionError) as ctx:
            ncm.get_key()
        self.assertEqual(ctx.exception.name, 'key')
        self.assertEqual(ctx.exception.actual, 5)
        with self.assertRaises(TruncatedSectionError):
            ncm.get_data()

    def test_truncated_info(self):
        buf = io.BytesIO(build_ncm())
        ncm = Ncmdump.from_reader(buf)
        buf.truncate(ncm.info.start + 10)
        self.assertEqual(ncm.get_key(), REF_KEY)
        with self.assertRaises(TruncatedSectionError) as ctx:
            ncm.get_info()
        self.assertEqual(ctx.exception.name, 'info')
        self.assertEqual(ctx.exception.expected, ncm.info.length)
        self.assertEqual(ctx.exception.actual, 10)

    def test_bad_key_block(self):
        ncm = open_bytes(build_ncm(key_data=b'\x00' * 15))
        with self.assertRaises(DecryptError):
            ncm.get_key()
        with self.assertRaises(DecryptError):
            ncm.get_data()

    def test_key_without_payload(self):
        ncm = open_bytes(build_ncm(key_data=key_block(b'')))
        with self.assertRaises(DecryptError):
            ncm.get_key()

    def test_empty_audio(self):
        ncm = open_bytes(build_ncm(audio=b''))
        self.assertEqual(ncm.get_data(), b'')


class InfoDecodeTests(unittest.TestCase):

    def assertInfoError(self, info_data):
        ncm = open_bytes(build_ncm(info_data=info_data))
        with self.assertRaises(InfoDecodeError):
            ncm.get_info()
        # 元数据坏了不影响其他区段
        self.assertEqual(ncm.get_key(), REF_KEY)

    def test_malformed_base64(self):
        block = bytes(b ^ 0x63 for b in b"163 key(Don't modify):not*base64!")
        self.assertInfoError(block)

    def test_misaligned_ciphertext(self):
        block = bytes(b ^ 0x63 for b in b"163 key(Don't modify):" + base64.b64encode(b'\x00' * 15))
        self.assertInfoError(block)

    def test_not_utf8(self):
        self.assertInfoError(info_block_from_plaintext(b'music:\xff\xfe\xfd'))

    def test_not_json(self):
        self.assertInfoError(info_block_from_plaintext(b'music:{"musicName": '))

    def test_empty_block(self):
        self.assertInfoError(b'')

    def test_missing_field(self):
        info = dict(REF_INFO)
        del info['bitrate']
        self.assertInfoError(info_block(info))

    def test_mistyped_fields(self):
        for key, value in (('musicId', '1305366556'), ('musicId', True), ('musicId', 1 << 64),
                           ('duration', -1), ('artist', [['华晨宇']]), ('artist', [[861777, '华晨宇']]),
                           ('alias', 'x'), ('mvId', 'x'), ('format', None)):
            info = dict(REF_INFO)
            info[key] = value
            with self.subTest(key=key, value=value):
                self.assertInfoError(info_block(info))

    def test_largest_id(self):
        info = dict(REF_INFO, musicId=(1 << 64) - 1)
        self.assertEqual(open_bytes(build_ncm(info=info)).get_info().id, (1 << 64) - 1)

    def test_optional_fields(self):
        info = dict(REF_INFO)
        del info['mvId']
        info['alias'] = None
        ncm = open_bytes(build_ncm(info=info))
        result = ncm.get_info()
        self.assertIsNone(result.mv_id)
        self.assertIsNone(result.alias)
        self.assertEqual(result.name, "寒鸦少年")


class NcmInfoTests(unittest.TestCase):

    def test_to_dict(self):
        data = EXPECTED_INFO.to_dict()
        self.assertEqual(data['musicName'], "寒鸦少年")
        self.assertEqual(data['musicId'], 1305366556)
        self.assertEqual(data['mvId'], 0)
        self.assertEqual(data['artist'], [["华晨宇", 861777]])
        self.assertEqual(NcmInfo.from_dict(data), EXPECTED_INFO)

    def test_artist_names(self):
        info = NcmInfo.from_dict(dict(REF_INFO, artist=[["A", 1], ["B", 2]]))
        self.assertEqual(info.artist_names, ["A", "B"])

    def test_not_object(self):
        with self.assertRaises(InfoDecodeError):
            NcmInfo.from_json('[1, 2]')


class OpenTests(unittest.TestCase):

    def test_open_path(self):
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / 'song.ncm'
            path.write_bytes(build_ncm())
            with Ncmdump.open(path) as ncm:
                self.assertEqual(ncm.get_key(), REF_KEY)
            self.assertTrue(ncm.reader.closed)

    def test_open_invalid(self):
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / 'song.ncm'
            path.write_bytes(b'not an ncm file')
            with self.assertRaises(InvalidFileType):
                Ncmdump.open(path)


if __name__ == '__main__':
    unittest.main()
