# =============================================================================
# Unit Tests — Sidecar Metadata and Content Hashing
# =============================================================================

import hashlib

import pytest

from app.db.models import SourcePriority
from app.services.hashing import hash_file, hash_text
from app.services.metadata import (
    MetadataError,
    load_metadata,
    sidecar_path,
    title_from_filename,
)
from fakes import write_document


class TestTitleFromFilename:
    def test_separators_become_spaces(self):
        assert title_from_filename("soil_food-web.pdf") == "Soil Food Web"

    def test_each_word_capitalised(self):
        assert title_from_filename("/data/knowledge/the-living-soil.pdf") == "The Living Soil"

    def test_plain_name(self):
        assert title_from_filename("compost.pdf") == "Compost"


class TestSidecarPath:
    def test_replaces_extension(self, tmp_path):
        assert sidecar_path(tmp_path / "guide.pdf") == tmp_path / "guide.meta.json"


class TestLoadMetadata:
    def test_without_sidecar_derives_title(self, knowledge_dir):
        path = write_document(knowledge_dir, "cover_crops.pdf")
        meta = load_metadata(path)
        assert meta.title == "Cover Crops"
        assert meta.author is None
        assert meta.priority == SourcePriority.NORMAL

    def test_reads_all_fields(self, knowledge_dir):
        path = write_document(knowledge_dir, "guide.pdf", sidecar={
            "title": "Field Guide",
            "author": "A. Grower",
            "year": 2019,
            "isbn": "978-0000000000",
            "topics": ["soil", "water"],
            "priority": "high",
        })
        meta = load_metadata(path)
        assert meta.title == "Field Guide"
        assert meta.author == "A. Grower"
        assert meta.year == 2019
        assert meta.isbn == "978-0000000000"
        assert meta.topics == ["soil", "water"]
        assert meta.priority == SourcePriority.HIGH

    def test_partial_sidecar_falls_back_to_derived_title(self, knowledge_dir):
        path = write_document(knowledge_dir, "no-title-here.pdf", sidecar={"author": "X"})
        meta = load_metadata(path)
        assert meta.title == "No Title Here"
        assert meta.author == "X"

    def test_unknown_priority_is_normal(self, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", sidecar={"priority": "urgent"})
        assert load_metadata(path).priority == SourcePriority.NORMAL

    def test_priority_is_case_insensitive(self, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", sidecar={"priority": "LOW"})
        assert load_metadata(path).priority == SourcePriority.LOW

    def test_unknown_keys_are_ignored(self, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", sidecar={"title": "T", "edition": 3})
        assert load_metadata(path).title == "T"

    def test_malformed_json_raises(self, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", sidecar="{not json")
        with pytest.raises(MetadataError, match="a.meta.json"):
            load_metadata(path)

    def test_non_object_json_raises(self, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", sidecar='["a", "list"]')
        with pytest.raises(MetadataError, match="JSON object"):
            load_metadata(path)

    def test_wrong_field_type_raises(self, knowledge_dir):
        path = write_document(knowledge_dir, "a.pdf", sidecar={"year": "last spring"})
        with pytest.raises(MetadataError):
            load_metadata(path)


class TestHashing:
    def test_hash_file_matches_sha256(self, tmp_path):
        path = tmp_path / "doc.pdf"
        path.write_bytes(b"%PDF-1.4 content")
        assert hash_file(path) == hashlib.sha256(b"%PDF-1.4 content").hexdigest()

    def test_hash_file_spans_multiple_blocks(self, tmp_path):
        data = b"x" * (3 * 1024 * 1024 + 17)
        path = tmp_path / "big.pdf"
        path.write_bytes(data)
        assert hash_file(path) == hashlib.sha256(data).hexdigest()

    def test_different_content_different_hash(self, tmp_path):
        a = tmp_path / "a.pdf"
        b = tmp_path / "b.pdf"
        a.write_bytes(b"one")
        b.write_bytes(b"two")
        assert hash_file(a) != hash_file(b)

    def test_missing_file_raises_oserror(self, tmp_path):
        with pytest.raises(OSError):
            hash_file(tmp_path / "missing.pdf")

    def test_hash_text_is_utf8_sha256(self):
        assert hash_text("sól") == hashlib.sha256("sól".encode()).hexdigest()
