"""Tests for design document loading."""

import pytest

from threatscope.document import extract_text_from_file
from threatscope.errors import CollectionError


@pytest.mark.parametrize("name", ['design.md', 'DESIGN.MARKDOWN', 'notes.txt'])
def test_reads_supported_formats(tmp_path, name):
    path = tmp_path / name
    path.write_text('# Payments\nCards flow through the gateway.\n', encoding='utf-8')
    assert extract_text_from_file(path).startswith('# Payments')


@pytest.mark.parametrize("name", ['design.pdf', 'diagram.png', 'Makefile'])
def test_rejects_unsupported_formats(tmp_path, name):
    path = tmp_path / name
    path.write_bytes(b'%PDF-1.7')
    with pytest.raises(CollectionError, match='Unsupported document format'):
        extract_text_from_file(path)


def test_missing_file(tmp_path):
    with pytest.raises(CollectionError, match='Cannot read document'):
        extract_text_from_file(tmp_path / 'missing.md')


def test_non_utf8_file(tmp_path):
    path = tmp_path / 'latin1.txt'
    path.write_bytes(b'caf\xe9 \xff\xfe')
    with pytest.raises(CollectionError):
        extract_text_from_file(path)
