import os
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from distributor import streams
from distributor.streams import ImportExtractor, LineTransform, Prepender, prepend_header


def _run(transform: LineTransform, chunks: list[bytes]) -> bytes:
    return b"".join(transform.process(chunks))


@pytest.mark.unit
def test_line_transform_passes_bytes_through_unchanged() -> None:
    data = "héllo\r\nworld\n\xff-tail".encode("utf-8", "surrogateescape")
    data = b"caf\xe9\r\n" + data

    assert _run(LineTransform(), [data]) == data


@pytest.mark.unit
def test_line_transform_joins_lines_split_across_chunks() -> None:
    seen: list[str] = []

    def inspector(line: str, line_bytes: bytes) -> str:
        seen.append(line)
        return line.upper()

    transform = LineTransform(inspector)
    out = _run(transform, [b"ab", b"c\nde", b"f\n", b"g"])

    assert seen == ["abc", "def", "g"]
    assert out == b"ABC\nDEF\nG"
    assert transform.current_size == len(out)


@pytest.mark.unit
def test_line_transform_strips_leading_newlines_of_each_stream() -> None:
    transform = LineTransform()

    first = _run(transform, [b"\n", b"\n\nfirst\n\nx"])
    second = _run(transform, [b"\nsecond\n"])

    assert first == b"first\n\nx"
    assert second == b"second\n"


@pytest.mark.unit
def test_line_transform_drops_lines_when_inspector_returns_none() -> None:
    transform = LineTransform(lambda line, raw: None if line.startswith("#") else line)

    assert _run(transform, [b"# drop\nkeep\n#also\n"]) == b"keep\n"
    assert transform.current_size == len(b"keep\n")


@pytest.mark.unit
def test_reset_current_size_and_set_inspector_chain() -> None:
    transform = LineTransform()
    _run(transform, [b"abc\n"])

    assert transform.reset_current_size().current_size == 0
    assert transform.set_inspector(lambda line, raw: line * 2) is transform
    assert _run(transform, [b"ab\n"]) == b"abab\n"


@pytest.mark.unit
def test_import_extractor_hoists_and_merges_requires() -> None:
    extractor = ImportExtractor()
    body = _run(
        extractor,
        [
            b'const { destConst } = require("other-id");\n',
            b'const testConst = require("other-id")\n',
            b"console.log(destConst);\n",
            b"  let {  a: alias , b } = require('m').sub;  \n",
        ],
    )
    extractor.finish()

    assert body == b"console.log(destConst);\n"
    assert extractor.parsed_imports == (
        'const { destConst, testConst } = require("other-id");\nlet { a: alias, b } = require("m").sub;'
    )


@pytest.mark.unit
def test_import_extractor_keeps_non_declaration_requires() -> None:
    extractor = ImportExtractor()
    lines = b'foo(require("x"));\nconst y = require(name);\nif (a) { const z = require("z"); }\n'

    assert _run(extractor, [lines]) == lines
    extractor.finish()
    assert extractor.parsed_imports == ""


@pytest.mark.unit
def test_import_extractor_merges_across_files_and_is_idempotent() -> None:
    extractor = ImportExtractor()
    _run(extractor, [b'const { a } = require("m");\n'])
    _run(extractor, [b'const { b } = require("m");\nconst { a } = require("m");\n'])
    extractor.finish()

    assert extractor.parsed_imports == 'const { a, b } = require("m");'


@pytest.mark.unit
def test_import_extractor_keeps_first_seen_variable_order() -> None:
    extractor = ImportExtractor()
    _run(extractor, [b'const { zeta } = require("m");\n'])
    _run(extractor, [b'const { alpha, mid } = require("m");\nconst { zeta } = require("m");\n'])
    extractor.finish()

    assert extractor.parsed_imports == 'const { zeta, alpha, mid } = require("m");'


@pytest.mark.unit
def test_import_extractor_single_plain_variable_has_no_braces() -> None:
    extractor = ImportExtractor()
    _run(extractor, [b"var fs = require(`fs`);\n"])
    extractor.finish()

    assert extractor.parsed_imports == 'var fs = require("fs");'


@pytest.mark.unit
def test_import_extractor_restore_rolls_back_imports() -> None:
    extractor = ImportExtractor()
    _run(extractor, [b'const { a } = require("m");\n'])
    saved = extractor.snapshot()
    _run(extractor, [b'const { b } = require("m");\nconst c = require("c");\n'])

    extractor.restore(saved).finish()

    assert extractor.parsed_imports == 'const { a } = require("m");'


@pytest.mark.unit
def test_import_extractor_finish_appends_blocks() -> None:
    extractor = ImportExtractor()
    _run(extractor, [b'const a = require("a");\n'])
    extractor.finish()
    _run(extractor, [b'const b = require("b");\n'])
    extractor.finish()

    assert extractor.parsed_imports == 'const a = require("a");\nconst b = require("b");'


@pytest.mark.unit
def test_prepend_header_puts_header_and_blank_line_first(tmp_path: Path) -> None:
    target = tmp_path / "dist.js"
    target.write_bytes(b"body();\n")
    os.chmod(target, 0o640)

    assert prepend_header(target, 'const a = require("a");') is True

    assert target.read_bytes() == b'const a = require("a");\n\nbody();\n'
    assert target.stat().st_mode & 0o777 == 0o640
    assert [p.name for p in tmp_path.iterdir()] == ["dist.js"]


@pytest.mark.unit
def test_prepend_header_on_empty_file(tmp_path: Path) -> None:
    target = tmp_path / "dist.js"
    target.write_bytes(b"")

    assert prepend_header(target, "HEADER") is True
    assert target.read_bytes() == b"HEADER\n\n"


@pytest.mark.unit
def test_prepender_writes_header_once(tmp_path: Path) -> None:
    target = tmp_path / "dist.js"
    target.write_bytes(b"x" * (streams.CHUNK_SIZE * 2 + 10))
    prepender = Prepender(target, "H")

    assert prepender.run() is True
    assert prepender.already_prepended is True
    content = target.read_bytes()
    assert content.startswith(b"H\n\nx")
    assert content.count(b"H") == 1


@pytest.mark.unit
def test_prepend_header_failure_leaves_original_untouched(tmp_path: Path, mocker: MockerFixture) -> None:
    target = tmp_path / "dist.js"
    target.write_bytes(b"body();\n")
    mocker.patch.object(streams.os, "replace", side_effect=OSError("swap failed"))

    assert prepend_header(target, "HEADER") is False

    assert target.read_bytes() == b"body();\n"
    assert [p.name for p in tmp_path.iterdir()] == ["dist.js"]


@pytest.mark.unit
def test_prepend_header_temp_creation_failure(tmp_path: Path, mocker: MockerFixture) -> None:
    target = tmp_path / "dist.js"
    target.write_bytes(b"body();\n")
    mocker.patch.object(streams.tempfile, "mkstemp", side_effect=OSError("no space"))

    assert prepend_header(target, "HEADER") is False
    assert target.read_bytes() == b"body();\n"
