"""Tests for the per-session Document Store."""

import pytest

from planforge.artifacts.store import HEADER_TITLE, strip_header
from planforge.errors import ValidationError

from conftest import set_age

SESSION = "session-1"


class TestSaveAndRead:
    """save() then read() round trips."""

    def test_round_trip_returns_original_content(self, artifacts):
        content = "# PRD\n\nSome requirements.\n"
        artifacts.save(SESSION, "acme-prd.md", content, {"phase": "pm"})
        artifact = artifacts.read(SESSION, "acme-prd.md")
        assert artifact.content == content
        assert artifact.raw_content.endswith(content)

    def test_header_format(self, artifacts):
        artifacts.save(
            SESSION,
            "acme-prd.md",
            "body",
            {"phase": "pm", "agent_id": "pm", "template_name": "prd"},
        )
        raw = artifacts.read(SESSION, "acme-prd.md").raw_content
        lines = raw.split("\n")
        assert lines[0] == "<!--"
        assert lines[1] == HEADER_TITLE
        assert lines[2].startswith("Generated: ")
        assert lines[3:7] == ["Session: session-1", "Phase: pm", "Agent: pm", "Template: prd"]
        assert lines[7] == "-->"
        assert lines[8] == ""
        assert lines[9] == "body"

    def test_missing_metadata_reads_unknown(self, artifacts):
        artifacts.save(SESSION, "notes.md", "body")
        raw = artifacts.read(SESSION, "notes.md").raw_content
        assert "Phase: unknown\nAgent: unknown\nTemplate: unknown\n" in raw

    def test_crlf_line_endings_preserved(self, artifacts):
        content = "line one\r\nline two\r\n"
        artifacts.save(SESSION, "doc.md", content)
        artifact = artifacts.read(SESSION, "doc.md")
        assert artifact.content == content
        assert artifact.raw_content.endswith(content)
        assert artifact.size == len(artifact.raw_content.encode("utf-8"))

    def test_header_stripped_exactly_once(self, artifacts):
        content = "<!--\nuser comment\n-->\n\nbody"
        artifacts.save(SESSION, "doc.md", content)
        assert artifacts.read(SESSION, "doc.md").content == content

    def test_leading_blank_lines_preserved(self, artifacts):
        content = "\n\nbody"
        artifacts.save(SESSION, "doc.md", content)
        assert artifacts.read(SESSION, "doc.md").content == content

    def test_same_filename_overwrites(self, artifacts):
        artifacts.save(SESSION, "doc.md", "first")
        artifacts.save(SESSION, "doc.md", "second")
        assert artifacts.read(SESSION, "doc.md").content == "second"
        assert len(artifacts.list(SESSION)) == 1

    def test_missing_read_returns_none(self, artifacts):
        assert artifacts.read(SESSION, "missing.md") is None
        assert artifacts.read("never-saved", "missing.md") is None

    def test_descriptor(self, artifacts):
        descriptor = artifacts.save(SESSION, "doc.md", "body")
        assert descriptor.filename == "doc.md"
        assert descriptor.session_id == SESSION
        assert descriptor.size == artifacts.read(SESSION, "doc.md").size


class TestListAndContext:
    """list() ordering and get_context() naming."""

    def test_list_newest_first_and_markdown_only(self, artifacts):
        old = artifacts.save(SESSION, "old.md", "old")
        new = artifacts.save(SESSION, "new.md", "new")
        set_age(old.path, 120)
        set_age(new.path, 10)
        (artifacts.session_dir(SESSION) / "scratch.txt").write_text("ignored")

        assert [d.filename for d in artifacts.list(SESSION)] == ["new.md", "old.md"]

    def test_overwrite_moves_document_to_front(self, artifacts):
        first = artifacts.save(SESSION, "first.md", "one")
        second = artifacts.save(SESSION, "second.md", "two")
        set_age(first.path, 120)
        set_age(second.path, 60)
        artifacts.save(SESSION, "first.md", "one, revised")

        assert [d.filename for d in artifacts.list(SESSION)] == ["first.md", "second.md"]

    def test_list_unknown_session_is_empty(self, artifacts):
        assert artifacts.list("nobody") == []

    def test_context_keys_drop_extension(self, artifacts):
        brief = artifacts.save(SESSION, "acme-project-brief.md", "# Brief")
        prd = artifacts.save(SESSION, "acme-prd.md", "# PRD")
        set_age(brief.path, 60)
        set_age(prd.path, 5)
        context = artifacts.get_context(SESSION)
        assert list(context.items()) == [
            ("acme-prd", "# PRD"),
            ("acme-project-brief", "# Brief"),
        ]


class TestDelete:
    """delete() and delete_all()."""

    def test_delete_one(self, artifacts):
        artifacts.save(SESSION, "doc.md", "body")
        assert artifacts.delete(SESSION, "doc.md") is True
        assert artifacts.read(SESSION, "doc.md") is None
        assert artifacts.delete(SESSION, "doc.md") is False

    def test_delete_all(self, artifacts):
        artifacts.save(SESSION, "a.md", "a")
        artifacts.save(SESSION, "b.md", "b")
        assert artifacts.delete_all(SESSION) is True
        assert artifacts.list(SESSION) == []
        assert artifacts.delete_all(SESSION) is False


class TestValidation:
    """Path components are validated before touching the filesystem."""

    @pytest.mark.parametrize("filename", ["../escape.md", "a/b.md", "..", ""])
    def test_bad_filename(self, artifacts, filename):
        with pytest.raises(ValidationError):
            artifacts.save(SESSION, filename, "body")

    def test_bad_session_id(self, artifacts):
        with pytest.raises(ValidationError):
            artifacts.read("../other", "doc.md")


def test_strip_header_leaves_plain_text_alone():
    assert strip_header("no header here") == "no header here"
