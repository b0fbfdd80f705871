"""Tests for compose, reply and forward field sets."""

from pathlib import Path

import pytest

from mailbridge.store.types import AttachmentRef, MessageBody, StoredHeader
from mailbridge.tools.compose import (
    ComposeBuilder,
    ComposeRequest,
    format_body_html,
    reply_all_cc,
    resolve_attachments,
    resolve_identity,
    split_addresses,
    wrap_document,
)

from conftest import FakeMailStore


@pytest.fixture
def builder(store: FakeMailStore) -> ComposeBuilder:
    return ComposeBuilder(store)


def _header(store: FakeMailStore, uri: str, message_id: str) -> StoredHeader:
    return next(h for h in store.headers[uri] if h.message_id == message_id)


# ── Body formatting ────────────────────────────────────────────────────────────


class TestFormatBodyHtml:
    def test_plain_text_is_escaped_with_line_breaks(self) -> None:
        assert format_body_html("a < b & c\nnext", is_html=False) == "a &lt; b &amp; c<br>next"

    def test_html_passes_through_without_newlines(self) -> None:
        assert format_body_html("<p>Hi</p>\n<p>there</p>", is_html=True) == "<p>Hi</p><p>there</p>"

    def test_html_non_ascii_becomes_character_references(self) -> None:
        assert format_body_html("<p>café €</p>", is_html=True) == "<p>caf&#233; &#8364;</p>"

    def test_missing_body(self) -> None:
        assert format_body_html(None, is_html=False) == ""

    def test_wrap_document_declares_utf8(self) -> None:
        doc = wrap_document("x")
        assert doc.startswith('<html><head><meta charset="UTF-8"></head><body>')
        assert doc.endswith("x</body></html>")


# ── Recipients ─────────────────────────────────────────────────────────────────


class TestRecipients:
    def test_split_respects_quoted_commas(self) -> None:
        assert split_addresses('"Doe, John" <john@example.com>, ann@example.com') == [
            '"Doe, John" <john@example.com>',
            "ann@example.com",
        ]

    def test_split_empty(self) -> None:
        assert split_addresses("") == []
        assert split_addresses(None) == []

    def test_reply_all_excludes_own_address_and_duplicates(self) -> None:
        header = StoredHeader(
            message_id="m",
            recipients="Me <ME@work.example>, bob@example.com",
            cc_list="Bob <bob@example.com>, carol@example.com",
        )
        assert reply_all_cc(header, "me@work.example") == "bob@example.com, carol@example.com"


# ── Identity and attachments ───────────────────────────────────────────────────


class TestResolveIdentity:
    def test_by_email_case_insensitive(self, store: FakeMailStore) -> None:
        identity, warning = resolve_identity(store, "ALIAS@work.example")
        assert identity is not None and identity.key == "id_alt"
        assert warning == ""

    def test_by_key(self, store: FakeMailStore) -> None:
        identity, _ = resolve_identity(store, "id_home")
        assert identity is not None and identity.email == "me@home.example"

    def test_unknown_sender_falls_back_with_warning(self, store: FakeMailStore) -> None:
        identity, warning = resolve_identity(store, "stranger@example.com")
        assert identity is not None and identity.key == "id_main"
        assert warning == "unknown identity: stranger@example.com, using default"

    def test_folder_context_picks_that_accounts_default(self, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://home/Inbox")
        identity, warning = resolve_identity(store, None, folder)
        assert identity is not None and identity.key == "id_home"
        assert warning == ""


class TestResolveAttachments:
    def test_existing_and_missing_files(self, tmp_path: Path) -> None:
        report = tmp_path / "report.pdf"
        report.write_bytes(b"%PDF-1.4")
        attached, failed = resolve_attachments([str(report), str(tmp_path / "missing.txt")])
        assert [a.name for a in attached] == ["report.pdf"]
        assert attached[0].content_type == "application/pdf"
        assert failed == [str(tmp_path / "missing.txt")]

    def test_directory_is_not_attachable(self, tmp_path: Path) -> None:
        attached, failed = resolve_attachments([str(tmp_path)])
        assert attached == []
        assert failed == [str(tmp_path)]

    def test_non_list_is_ignored(self) -> None:
        assert resolve_attachments("not-a-list") == ([], [])


# ── ComposeBuilder ─────────────────────────────────────────────────────────────


class TestCompose:
    def test_plain_compose(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        outcome = builder.compose(ComposeRequest(to="bob@example.com", subject="Hi", body="Hello\nBob"))
        assert outcome.as_result() == {
            "success": True,
            "message": "Compose window opened",
            "attachmentCount": 0,
            "failedAttachments": [],
        }
        fields = store.composed[0]
        assert fields.to == "bob@example.com"
        assert fields.body == wrap_document("Hello<br>Bob")
        assert fields.identity is not None and fields.identity.key == "id_main"

    def test_full_html_document_not_rewrapped(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        body = "<html><body><p>Hi</p></body></html>"
        builder.compose(ComposeRequest(to="a@example.com", body=body, is_html=True))
        assert store.composed[0].body == body

    def test_unknown_sender_and_failed_attachment_noted(
        self, builder: ComposeBuilder, tmp_path: Path
    ) -> None:
        missing = str(tmp_path / "nope.pdf")
        outcome = builder.compose(
            ComposeRequest(to="a@example.com", sender="ghost@example.com", attachments=[missing])
        )
        assert outcome.message == (
            "Compose window opened (unknown identity: ghost@example.com, using default)"
            f" (failed to attach: {missing})"
        )
        assert outcome.as_result()["failedAttachments"] == [missing]

    def test_from_arguments(self) -> None:
        request = ComposeRequest.from_arguments(
            {"to": "a@example.com", "isHtml": True, "from": "", "attachments": ["/x"], "replyAll": 1}
        )
        assert request.is_html is True
        assert request.sender is None
        assert request.attachments == ["/x"]
        assert request.reply_all is True


class TestReply:
    def test_reply_fields(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://work/Inbox")
        header = _header(store, "fake://work/Inbox", "budget@example.com")
        outcome = builder.reply(
            ComposeRequest(body="Looks good."), header, folder, store.bodies["budget@example.com"]
        )
        fields = store.composed[0]
        assert outcome.message == "Reply window opened"
        assert fields.to == "Alice <alice@example.com>"
        assert fields.cc == ""
        assert fields.subject == "Re: Q2 budget review"
        assert fields.references == "<budget@example.com>"
        assert fields.headers == {"In-Reply-To": "<budget@example.com>"}
        assert "Looks good.<br><br>On " in fields.body
        assert "Alice &lt;alice@example.com&gt; wrote:<br>&gt; Please review the budget.<br>&gt; Thanks, Alice" in fields.body

    def test_reply_all_builds_cc_without_self(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://work/Inbox")
        header = _header(store, "fake://work/Inbox", "budget@example.com")
        builder.reply(ComposeRequest(reply_all=True), header, folder, None)
        assert store.composed[0].cc == "Bob <bob@example.com>, carol@example.com"

    def test_explicit_cc_wins_over_reply_all(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://work/Inbox")
        header = _header(store, "fake://work/Inbox", "budget@example.com")
        builder.reply(ComposeRequest(reply_all=True, cc="x@example.com"), header, folder, None)
        assert store.composed[0].cc == "x@example.com"

    def test_existing_re_prefix_not_doubled(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://work/Inbox")
        header = StoredHeader(message_id="m", subject="Re: hello", author="a@example.com")
        builder.reply(ComposeRequest(), header, folder, None)
        assert store.composed[0].subject == "Re: hello"

    def test_identity_follows_folder_account(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://home/Inbox")
        header = _header(store, "fake://home/Inbox", "invoice@example.com")
        builder.reply(ComposeRequest(), header, folder, None)
        assert store.composed[0].identity.key == "id_home"


class TestForward:
    def test_forward_keeps_original_attachments(self, builder: ComposeBuilder, store: FakeMailStore, tmp_path: Path) -> None:
        extra = tmp_path / "notes.txt"
        extra.write_text("notes")
        folder = store.get_folder("fake://work/Inbox")
        header = _header(store, "fake://work/Inbox", "budget@example.com")
        original = MessageBody(
            text="See attached.",
            attachments=[AttachmentRef(name="budget.xlsx", data=b"xlsx")],
        )
        outcome = builder.forward(
            ComposeRequest(to="eve@example.com", body="FYI", attachments=[str(extra)]),
            header,
            folder,
            original,
        )
        fields = store.composed[0]
        assert outcome.message == "Forward window opened with 2 attachment(s)"
        assert outcome.attachment_count == 2
        assert [a.name for a in fields.attachments] == ["budget.xlsx", "notes.txt"]
        assert fields.subject == "Fwd: Q2 budget review"
        assert fields.to == "eve@example.com"
        assert "FYI<br><br>-------- Forwarded Message --------<br>" in fields.body
        assert "Subject: Q2 budget review<br>" in fields.body
        assert "To: me@work.example, Bob &lt;bob@example.com&gt;<br><br>See attached." in fields.body

    def test_forward_without_intro_or_original(self, builder: ComposeBuilder, store: FakeMailStore) -> None:
        folder = store.get_folder("fake://work/Inbox")
        header = StoredHeader(message_id="m", subject="Fwd: old", author="a@example.com")
        outcome = builder.forward(ComposeRequest(to="b@example.com"), header, folder, None)
        fields = store.composed[0]
        assert fields.subject == "Fwd: old"
        assert outcome.message == "Forward window opened with 0 attachment(s)"
        assert "<body>-------- Forwarded Message --------" in fields.body
