"""Unit tests for the docindex command line interface."""

from __future__ import annotations

import logging

import orjson
import pytest

from docindex.cli import main
from docindex.observability import tracing as tracing_module


@pytest.fixture(autouse=True)
def restore_root_logging():
    """main() reconfigures the root logger; put the previous handlers back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def corpus(tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "report.txt").write_text("Intro page\fRevenue grew 20% this year\fClosing", encoding="utf-8")
    (docs / "notes.md").write_text("Meeting notes about hiring", encoding="utf-8")
    (docs / "empty.txt").write_text("", encoding="utf-8")
    return docs


@pytest.fixture
def index_dir(tmp_path):
    return tmp_path / "index"


def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_index_then_search_json(capsys, corpus, index_dir):
    code, out, _ = _run(capsys, "-i", str(index_dir), "index", str(corpus))
    assert code == 0
    assert "Indexed 2 documents" in out
    assert "(1 failed)" in out

    code, out, _ = _run(capsys, "-i", str(index_dir), "search", "revenue", "--json")
    assert code == 0
    (hit,) = orjson.loads(out)
    assert hit["fileName"] == "report.txt"
    assert hit["matchedPages"] == [2]
    assert "Revenue" in hit["snippet"]


def test_search_human_output(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    code, out, _ = _run(capsys, "-i", str(index_dir), "search", "hiring")

    assert code == 0
    assert out.startswith("1. notes.md")
    assert "pages: N/A" in out


def test_search_without_hits(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    code, out, _ = _run(capsys, "-i", str(index_dir), "search", "zeppelin")

    assert code == 0
    assert "No results" in out


def test_list_and_stats(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    code, out, _ = _run(capsys, "-i", str(index_dir), "list", "--json")
    assert code == 0
    assert sorted(doc["fileName"] for doc in orjson.loads(out)) == ["notes.md", "report.txt"]

    code, out, _ = _run(capsys, "-i", str(index_dir), "stats", "--json")
    assert code == 0
    stats = orjson.loads(out)
    assert stats["totalDocuments"] == 2
    assert stats["tokenizer"] == "standard"

    code, out, _ = _run(capsys, "-i", str(index_dir), "stats")
    assert "Documents:         2" in out


def test_reindex_then_optimize_purges(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))
    _run(capsys, "-i", str(index_dir), "index", str(corpus / "notes.md"))

    code, out, _ = _run(capsys, "-i", str(index_dir), "optimize")

    assert code == 0
    assert "Purged 1 deleted documents" in out


def test_clear_with_and_without_confirmation(capsys, monkeypatch, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    monkeypatch.setattr("builtins.input", lambda _prompt: "n")
    code, out, _ = _run(capsys, "-i", str(index_dir), "clear")
    assert code == 1
    assert "Aborted" in out

    code, _, _ = _run(capsys, "-i", str(index_dir), "clear", "--yes")
    assert code == 0
    _, out, _ = _run(capsys, "-i", str(index_dir), "stats", "--json")
    assert orjson.loads(out)["totalDocuments"] == 0


def test_missing_index_fails_cleanly(capsys, index_dir):
    code, _, err = _run(capsys, "-i", str(index_dir), "search", "anything")

    assert code == 1
    assert "No index found" in err


def test_invalid_query_fails_cleanly(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    code, _, err = _run(capsys, "-i", str(index_dir), "search", "(revenue")

    assert code == 1
    assert "parenthesis" in err


def test_tokenizer_mismatch_fails_cleanly(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    code, _, err = _run(capsys, "-i", str(index_dir), "index", str(corpus), "--tokenizer", "cjk")

    assert code == 1
    assert "tokenizer" in err


def test_index_dir_from_environment(capsys, monkeypatch, corpus, index_dir):
    monkeypatch.setenv("DOCINDEX_INDEX_DIR", str(index_dir))

    code, _, _ = _run(capsys, "index", str(corpus))

    assert code == 0
    assert (index_dir / "index.db").exists()


def test_invalid_configuration(capsys, monkeypatch):
    monkeypatch.setenv("DOCINDEX_SNIPPET_LENGTH", "1")

    code, _, err = _run(capsys, "stats")

    assert code == 1
    assert "Invalid configuration" in err


def test_index_without_recursion_skips_subdirectories(capsys, corpus, index_dir):
    nested = corpus / "archive"
    nested.mkdir()
    (nested / "old.txt").write_text("Submarine maintenance log", encoding="utf-8")

    code, out, _ = _run(capsys, "-i", str(index_dir), "index", str(corpus), "--no-recursive")
    assert code == 0
    assert "Indexed 2 documents" in out
    _, out, _ = _run(capsys, "-i", str(index_dir), "search", "submarine")
    assert "No results" in out

    _run(capsys, "-i", str(index_dir), "index", str(corpus))
    _, out, _ = _run(capsys, "-i", str(index_dir), "search", "submarine", "--json")
    assert [hit["fileName"] for hit in orjson.loads(out)] == ["old.txt"]


def test_read_prints_file_details(capsys, corpus):
    report = corpus / "report.txt"

    code, out, _ = _run(capsys, "read", str(report))

    assert code == 0
    assert "File: report.txt" in out
    assert f"Path: {report.resolve()}" in out
    assert "Type: text/plain" in out
    assert f"Size: {report.stat().st_size} bytes" in out
    assert "--- Content ---" in out
    assert "Revenue grew 20% this year" in out
    assert "truncated" not in out


def test_read_json_applies_limit(capsys, corpus):
    code, out, _ = _run(capsys, "read", str(corpus / "report.txt"), "--json", "-l", "5")

    assert code == 0
    document = orjson.loads(out)
    assert document["fileName"] == "report.txt"
    assert document["content"] == "Intro"
    assert document["truncated"] is True
    assert document["pageCount"] == 3
    assert document["metadata"]["extension"] == "txt"


def test_read_limit_zero_prints_everything(capsys, corpus):
    _, out, _ = _run(capsys, "read", str(corpus / "report.txt"), "--json", "--limit", "0")

    document = orjson.loads(out)
    assert document["content"].endswith("Closing")
    assert document["truncated"] is False


def test_read_missing_file_fails_cleanly(capsys, tmp_path):
    code, out, err = _run(capsys, "read", str(tmp_path / "missing.txt"))

    assert code == 1
    assert out == ""
    assert "Cannot read" in err


def test_metrics_reports_document_gauge(capsys, corpus, index_dir):
    _run(capsys, "-i", str(index_dir), "index", str(corpus))

    code, out, _ = _run(capsys, "-i", str(index_dir), "metrics")

    assert code == 0
    assert "docindex_index_documents 2.0" in out
    assert "docindex_commits_total" in out


def test_trace_console_writes_spans_to_stderr(capsys, monkeypatch, corpus, index_dir):
    monkeypatch.setitem(tracing_module._tracer_holder, "tracer", None)
    monkeypatch.setenv("DOCINDEX_TRACE_CONSOLE", "true")

    code, out, err = _run(capsys, "-i", str(index_dir), "index", str(corpus))

    assert code == 0
    assert '"name": "docindex.commit"' in err
    assert '"docindex.command": "index"' in err
    assert "docindex.commit" not in out
