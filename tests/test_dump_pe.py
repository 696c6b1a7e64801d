"""Tests for the pemap-dump command line tool."""

import json
import sys
from pathlib import Path

import pytest

from pemap import unpack_msgpack
from pemap.pe.types import IMAGE_DIRECTORY_ENTRY_DEBUG
from pemap.tools import dump_pe


def run_main(monkeypatch, *args: str) -> None:
    monkeypatch.setattr(sys, "argv", ["pemap-dump", *args])
    dump_pe.main()


class TestDumpPe:
    """Tests for dump_pe.main()."""

    def test_json_to_stdout(self, monkeypatch, capsys, sample_pe32_path: Path):
        run_main(monkeypatch, str(sample_pe32_path))

        data = json.loads(capsys.readouterr().out)
        assert data["file_header"]["machine"] == "I386"
        assert data["imports"][0]["dll_name"] == "KERNEL32.dll"

    def test_text_summary(self, monkeypatch, capsys, sample_pe64_path: Path):
        run_main(monkeypatch, str(sample_pe64_path), "--format", "text")

        out = capsys.readouterr().out
        assert "Format:      PE32+" in out
        assert "Machine:     AMD64" in out
        assert "Imports (2 modules):" in out
        assert "-> KERNEL32.Sleep" in out
        assert "Resources: 3 data entries" in out

    def test_msgpack_to_file(
        self, monkeypatch, tmp_path: Path, sample_pe32_path: Path
    ):
        output = tmp_path / "out.msgpack"
        run_main(
            monkeypatch,
            str(sample_pe32_path),
            "--format",
            "msgpack",
            "--output",
            str(output),
        )

        data = unpack_msgpack(output.read_bytes())
        assert data["optional_header"]["magic"] == "PE32"

    def test_exclude(self, monkeypatch, capsys, sample_pe32_path: Path):
        run_main(
            monkeypatch, str(sample_pe32_path), "-x", "imports", "-x", "resources"
        )

        data = json.loads(capsys.readouterr().out)
        assert data["imports"] is None
        assert data["resources"] is None
        assert data["exports"] is not None

    def test_verify_passes(self, monkeypatch, capsys, sample_pe32_path: Path):
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, str(sample_pe32_path), "--verify", "-f", "text")

        assert exc_info.value.code == 0
        assert "Verification PASSED" in capsys.readouterr().err

    def test_parse_error_exits_1(self, monkeypatch, capsys, tmp_path: Path):
        path = tmp_path / "bad.exe"
        path.write_bytes(b"not a pe")

        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, str(path))

        assert exc_info.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_missing_file_exits_1(self, monkeypatch, capsys, tmp_path: Path):
        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, str(tmp_path / "missing.dll"))

        assert exc_info.value.code == 1
        assert "does not exist" in capsys.readouterr().err

    def test_verify_header_space_directory(
        self, monkeypatch, capsys, tmp_path: Path, sample_builder
    ):
        """Test a directory that parses cleanly also verifies cleanly."""
        sample_builder.set_directory(IMAGE_DIRECTORY_ENTRY_DEBUG, 0x800, 0x1C)
        path = tmp_path / "debug.dll"
        path.write_bytes(sample_builder.build())

        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, str(path), "--verify", "-f", "text")

        assert exc_info.value.code == 0
        assert "Verification PASSED" in capsys.readouterr().err

    def test_verify_failure_exits_1(
        self, monkeypatch, capsys, tmp_path: Path, sample_builder
    ):
        sample_builder.size_of_image = 0x1000
        path = tmp_path / "short.dll"
        path.write_bytes(sample_builder.build())

        with pytest.raises(SystemExit) as exc_info:
            run_main(monkeypatch, str(path), "--verify", "-f", "text")

        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Verification FAILED" in err
        assert "[error] optional header: SizeOfImage 0x1000" in err
