import os
import stat

import pytest

from kindtools.fs import copy, copy_file, is_abs, temp_dir


def test_is_abs():
    assert is_abs("/etc/hosts")
    assert not is_abs("relative/path")


def test_temp_dir_in_given_dir(tmp_path):
    name = temp_dir(str(tmp_path), "images-tar")
    assert os.path.isdir(name)
    assert os.path.basename(name).startswith("images-tar")
    assert os.path.samefile(os.path.dirname(name), tmp_path)


def test_temp_dir_default_location():
    name = temp_dir()
    try:
        assert os.path.isdir(name)
        assert is_abs(name)
    finally:
        os.rmdir(name)


def test_temp_dir_is_unique(tmp_path):
    assert temp_dir(str(tmp_path)) != temp_dir(str(tmp_path)) or False
    assert len(os.listdir(tmp_path)) == 2


def test_copy_file_keeps_content_and_mode(tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"payload")
    os.chmod(src, 0o640)
    dst = tmp_path / "dst.txt"
    copy_file(str(src), str(dst))
    assert dst.read_bytes() == src.read_bytes()
    assert stat.S_IMODE(os.stat(dst).st_mode) == stat.S_IMODE(os.stat(src).st_mode)


def test_copy_file_truncates_existing(tmp_path):
    src = tmp_path / "src.txt"
    src.write_bytes(b"short")
    dst = tmp_path / "dst.txt"
    dst.write_bytes(b"a much longer existing content")
    copy_file(str(src), str(dst))
    assert dst.read_bytes() == b"short"


def test_copy_file_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy_file(str(tmp_path / "missing"), str(tmp_path / "dst"))


def test_copy_tree_creates_parents(tmp_path):
    src = tmp_path / "src"
    (src / "nested").mkdir(parents=True)
    (src / "top.txt").write_bytes(b"top")
    (src / "nested" / "inner.txt").write_bytes(b"inner")
    dst = tmp_path / "out" / "deep" / "copy"
    copy(str(src), str(dst))
    assert (dst / "top.txt").read_bytes() == b"top"
    assert (dst / "nested" / "inner.txt").read_bytes() == b"inner"
    assert sorted(os.listdir(dst)) == sorted(os.listdir(src))


def test_copy_dereferences_symlinks(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "real.txt").write_bytes(b"data")
    os.symlink(src / "real.txt", src / "link.txt")
    dst = tmp_path / "dst"
    copy(str(src), str(dst))
    assert not os.path.islink(dst / "link.txt")
    assert (dst / "link.txt").read_bytes() == b"data"


def test_copy_single_file(tmp_path):
    src = tmp_path / "file.bin"
    src.write_bytes(b"\x00\x01\x02")
    dst = tmp_path / "a" / "b" / "file.bin"
    copy(str(src), str(dst))
    assert dst.read_bytes() == b"\x00\x01\x02"


def test_copy_missing_source(tmp_path):
    with pytest.raises(FileNotFoundError):
        copy(str(tmp_path / "missing"), str(tmp_path / "dst"))


def test_copy_dangling_symlink_fails(tmp_path):
    link = tmp_path / "dangling"
    os.symlink(tmp_path / "nowhere", link)
    with pytest.raises(OSError):
        copy(str(link), str(tmp_path / "dst"))