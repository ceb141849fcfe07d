"""Tests for ContextFileFilter."""

from specflow.domain.entities.workflow_state import ContextFile
from specflow.domain.ports.config import ContextFilesConfig
from specflow.domain.services.context_filter import ContextFileFilter, is_image_like


def _file(name: str, content: str = "text", **kwargs) -> ContextFile:
    return ContextFile(id=name, name=name, content=content, size=len(content), **kwargs)


class TestIsImageLike:
    def test_by_type(self):
        assert is_image_like(_file("a", type="image"))

    def test_by_mime_type_in_type(self):
        assert is_image_like(_file("diagram", type="image/png", content="\x89PNG-RAW-BYTES"))
        assert is_image_like(_file("scan", type="IMAGE/JPEG"))
        assert not is_image_like(_file("readme", type="text/plain"))

    def test_by_mime_type(self):
        assert is_image_like(_file("a.bin", mime_type="image/png"))

    def test_by_extension(self):
        assert is_image_like(_file("diagram.PNG"))
        assert is_image_like(_file("photo.tiff"))

    def test_by_data_url(self):
        assert is_image_like(_file("blob", content="  data:image/jpeg;base64,AAAA"))

    def test_text_file(self):
        assert not is_image_like(_file("notes.md", mime_type="text/markdown"))


class TestContextFileFilter:
    def test_drops_images_keeps_order(self):
        files = [
            _file("a.md"),
            _file("b.png", mime_type="image/png"),
            _file("c.py", type="code"),
        ]
        result = ContextFileFilter().filter(files)
        assert [f.name for f in result] == ["a.md", "c.py"]

    def test_drops_oversized_file(self):
        files = [_file("big.txt", "x" * 2001), _file("small.txt", "y" * 10)]
        result = ContextFileFilter().filter(files)
        assert [f.name for f in result] == ["small.txt"]

    def test_aggregate_limit_first_fit(self):
        files = [
            _file("a", "a" * 1900),
            _file("b", "b" * 1900),
            _file("c", "c" * 1900),
            _file("d", "d" * 500),
        ]
        result = ContextFileFilter().filter(files)
        assert [f.name for f in result] == ["a", "b", "d"]
        assert sum(len(f.content) for f in result) <= 5000

    def test_explicit_limits_override_config(self):
        files = [_file("a", "a" * 50), _file("b", "b" * 50)]
        result = ContextFileFilter().filter(files, max_file_chars=60, max_total_chars=80)
        assert [f.name for f in result] == ["a"]

    def test_config_limits(self):
        config = ContextFilesConfig(max_file_chars=10, max_total_chars=100)
        result = ContextFileFilter(config).filter([_file("a", "a" * 11), _file("b", "b" * 10)])
        assert [f.name for f in result] == ["b"]

    def test_empty(self):
        assert ContextFileFilter().filter([]) == []
