"""
Adapter tests: local storage, codec decoding, zip packing
"""
import io
import json
import zipfile
from pathlib import Path

import pytest

from big5_service.conversion import FileStatus
from big5_service.conversion.adapters import CodecDecoder, LocalStorage, ZipArchiver
from big5_service.conversion.service import ConvertibleFile


def _file(file_id="f1", name="page.html", raw=b"raw", sequence=1, **kw):
    return ConvertibleFile(id=file_id, name=name, raw_bytes=raw, sequence=sequence, **kw)


class TestLocalStorage:
    def test_round_trip_with_content(self, storage):
        f = _file(name="頁面.html", raw=b"\xa4\xa4")
        f.transition(FileStatus.CONVERTING)
        f.decoded_text = "中"
        f.transition(FileStatus.DONE)
        storage.save_file(f)

        loaded = storage.load_file("f1")
        assert loaded.name == "頁面.html"
        assert loaded.raw_bytes == b"\xa4\xa4"
        assert loaded.decoded_text == "中"
        assert loaded.status is FileStatus.DONE

    def test_layout_on_disk(self, storage):
        storage.save_file(_file())
        d = Path(storage.file_dir("f1"))
        meta = json.loads((d / "file.json").read_text(encoding="utf-8"))
        assert meta["status"] == "pending"
        assert "raw_bytes" not in meta
        assert (d / "input" / "original").read_bytes() == b"raw"
        assert not (d / "output" / "converted.html").exists()

    def test_missing_file(self, storage):
        with pytest.raises(FileNotFoundError):
            storage.load_file("nope")
        assert not storage.exists("nope")

    def test_list_sorted_by_intake(self, storage):
        storage.save_file(_file("b", sequence=2))
        storage.save_file(_file("a", sequence=3))
        storage.save_file(_file("c", sequence=1))
        assert [f.id for f in storage.list_files()] == ["c", "b", "a"]

    def test_list_empty_before_any_save(self, storage):
        assert storage.list_files() == []

    def test_remove(self, storage):
        storage.save_file(_file())
        storage.remove_file("f1")
        assert not Path(storage.file_dir("f1")).exists()
        with pytest.raises(FileNotFoundError):
            storage.remove_file("f1")


class TestCodecDecoder:
    def test_big5(self):
        assert CodecDecoder().decode("繁體中文".encode("big5")) == "繁體中文"

    def test_default_codec_covers_extensions(self):
        assert CodecDecoder().decode(b"\xf9\xd6") == "碁"

    def test_strict_raises(self):
        with pytest.raises(UnicodeDecodeError):
            CodecDecoder().decode(b"\xff\xff")

    def test_unknown_encoding(self):
        with pytest.raises(LookupError):
            CodecDecoder("no-such-codec").decode(b"abc")


class TestZipArchiver:
    def test_entries_utf8_encoded(self):
        data = ZipArchiver().build({"utf8_a.html": "中文", "utf8_報告.htm": "<p>x</p>"})
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert set(zf.namelist()) == {"utf8_a.html", "utf8_報告.htm"}
            assert zf.read("utf8_a.html") == "中文".encode("utf-8")
            assert zf.getinfo("utf8_a.html").compress_type == zipfile.ZIP_DEFLATED

    def test_empty(self):
        with zipfile.ZipFile(io.BytesIO(ZipArchiver().build({}))) as zf:
            assert zf.namelist() == []
