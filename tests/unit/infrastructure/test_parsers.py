"""Unit tests for the built-in record parsers."""

import gzip
import io
import json
import tarfile

import pytest

from refstore.domain.shared.error import ParseError
from refstore.infrastructure.ingest.parser import FastaParser, JsonLinesParser, decompress

FASTA = b""">sp|P69905|HBA_HUMAN Hemoglobin subunit alpha OS=Homo sapiens
MVLSPADKTNVKAAWGKVGA
HAGEYGAEALERMFLSFPTT
>sp|P68871|HBB_HUMAN Hemoglobin subunit beta OS=Homo sapiens
MVHLTPEEKSAVTALWGKV
>plain_id some description
ACGT
"""


def _tar_gz(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class TestDecompress:
    def test_plain_passthrough(self):
        assert decompress(b"abc", (".fasta",)) == b"abc"

    def test_gzip(self):
        assert decompress(gzip.compress(b"abc"), (".fasta",)) == b"abc"

    def test_concatenated_gzip_members(self):
        data = gzip.compress(b"one\n") + gzip.compress(b"two\n")
        assert decompress(data, (".jsonl",)) == b"one\ntwo\n"

    def test_tarball_member_by_suffix(self):
        data = _tar_gz({"README": b"read me", "uniprot_sprot.fasta.gz": gzip.compress(FASTA)})
        assert decompress(data, (".fasta",)) == FASTA

    def test_tarball_without_matching_member(self):
        with pytest.raises(ParseError):
            decompress(_tar_gz({"README": b"read me"}), (".fasta",))

    def test_corrupt_gzip(self):
        with pytest.raises(ParseError):
            decompress(b"\x1f\x8b" + b"\x00" * 20, (".fasta",))


class TestFastaParser:
    def test_counts_entries(self):
        assert FastaParser("protein").count_records(FASTA) == 3

    def test_uniprot_header(self):
        record = FastaParser("protein").parse_range(FASTA, 0, 0)[0]
        assert record.record_identifier == "p69905"
        assert record.record_name == "HBA_HUMAN"
        assert record.record_data["sequence"] == "MVLSPADKTNVKAAWGKVGAHAGEYGAEALERMFLSFPTT"
        assert record.record_data["length"] == 40
        assert record.record_data["description"].startswith("Hemoglobin subunit alpha")
        assert record.sequence_md5 is not None
        assert record.source_offset == 0

    def test_plain_header(self):
        record = FastaParser("protein").parse_range(FASTA, 2, 2)[0]
        assert record.record_identifier == "plain_id"
        assert record.record_name == "some description"

    def test_range_is_inclusive_and_clamped(self):
        parser = FastaParser("protein")
        assert len(parser.parse_range(FASTA, 1, 2)) == 2
        assert len(parser.parse_range(FASTA, 1, 100)) == 2
        assert parser.parse_range(FASTA, 5, 9) == []

    def test_entry_without_sequence_is_skipped(self):
        data = b">sp|P1|A_HUMAN\n>sp|P2|B_HUMAN\nMK\n"
        records = FastaParser("protein").parse_range(data, 0, 1)
        assert [r.record_identifier for r in records] == ["p2"]

    def test_blank_accession_is_skipped(self):
        data = b">sp| |A_HUMAN\nMK\n>sp|P2|B_HUMAN\nMK\n"
        records = FastaParser("protein").parse_range(data, 0, 1)
        assert [r.record_identifier for r in records] == ["p2"]

    def test_gzipped_input(self):
        assert FastaParser("protein").count_records(gzip.compress(FASTA)) == 3

    def test_text_without_headers(self):
        with pytest.raises(ParseError):
            FastaParser("protein").count_records(b"this is not fasta\n")

    def test_empty_input(self):
        assert FastaParser("protein").count_records(b"") == 0


class TestJsonLinesParser:
    def _data(self) -> bytes:
        lines = [
            json.dumps({"id": "GO:0008150", "name": "biological_process"}),
            "not json",
            json.dumps({"name": "no identifier"}),
            json.dumps(["not", "an", "object"]),
            json.dumps({"id": "GO:0003674", "name": "molecular_function", "sequence": 5}),
        ]
        return "\n".join(lines).encode()

    def test_skips_unusable_lines(self):
        parser = JsonLinesParser("ontology-term")
        data = self._data()
        assert parser.count_records(data) == 5
        records = parser.parse_range(data, 0, 4)
        assert [r.record_identifier for r in records] == ["go:0008150", "go:0003674"]
        assert [r.source_offset for r in records] == [0, 4]
        assert records[1].sequence_md5 is None

    def test_custom_fields(self):
        parser = JsonLinesParser("taxon", identifier_field="tax_id", name_field="scientific_name")
        data = json.dumps({"tax_id": 9606, "scientific_name": "Homo sapiens"}).encode()
        record = parser.parse_range(data, 0, 0)[0]
        assert record.record_identifier == "9606"
        assert record.record_name == "Homo sapiens"

    def test_blank_lines_are_not_records(self):
        data = b'{"id": "a"}\n\n   \n{"id": "b"}\n'
        assert JsonLinesParser("x").count_records(data) == 2

    def test_blank_identifier_is_skipped(self):
        data = b'{"id": "p1"}\n{"id": "  "}\n{"id": "p3"}\n'
        parser = JsonLinesParser("protein")
        records = parser.parse_range(data, 0, 2)
        assert parser.count_records(data) == 3
        assert [r.record_identifier for r in records] == ["p1", "p3"]
