import json
import sys

import pytest

from conftest import D1_TEXT
from docrecall import cli, orchestrator as orchestrator_module


@pytest.fixture
def hashing_env(tmp_path, monkeypatch):
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hashing")
    monkeypatch.setenv("EMBEDDING_DIM", "64")
    monkeypatch.setenv("OLLAMA_HOST", "http://ollama.test")
    return tmp_path


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["docrecall", *argv])
    cli.main()


def test_status_prints_json(hashing_env, monkeypatch, capsys):
    run(monkeypatch, "--db", str(hashing_env / "cli.db"), "status")

    info = json.loads(capsys.readouterr().out)
    assert info["document_count"] == 0
    assert info["embedding_dim"] == 64


def test_no_command_prints_help(monkeypatch, capsys):
    with pytest.raises(SystemExit) as info:
        run(monkeypatch)
    assert info.value.code == 0
    assert "docrecall" in capsys.readouterr().out


def test_process_text_file(tmp_path, monkeypatch, capsys, orchestrator):
    path = tmp_path / "d1.txt"
    path.write_text(D1_TEXT, encoding="utf-8")
    monkeypatch.setattr(orchestrator_module, "create_orchestrator", lambda config: orchestrator)

    run(monkeypatch, "process", str(path))

    out = capsys.readouterr().out
    header, _, result = out.partition("\n\n")
    assert json.loads(header)["source"] == "generated"
    assert result.strip() == "summary #1"


def test_process_missing_file(tmp_path, monkeypatch, capsys):
    with pytest.raises(SystemExit) as info:
        run(monkeypatch, "process", str(tmp_path / "missing.pdf"))
    assert info.value.code == 1
    assert "File not found" in capsys.readouterr().out


def test_process_unsupported_type(tmp_path, monkeypatch, capsys):
    path = tmp_path / "archive.zip"
    path.write_bytes(b"PK")
    with pytest.raises(SystemExit) as info:
        run(monkeypatch, "process", str(path))
    assert info.value.code == 1
    assert "Unsupported" in capsys.readouterr().out
