"""Tests for fuzzy contact and message search."""

from commsync.application.search import search
from commsync.domain.models import Contact, Participant

from conftest import BASE_TIME, make_message


def make_contact(address, name="", last_message="", account_id="acct-a"):
    return Contact(
        account_id=account_id,
        address=address,
        name=name,
        last_message=last_message,
        last_message_time=BASE_TIME,
    )


CONTACTS = [
    make_contact("alice@example.com", "Alice Smith", "Lunch on Friday?"),
    make_contact("bob@example.com", "Bob Jones", "Invoice attached"),
    make_contact("carol@example.com", "Carol White", "See you soon"),
]


class TestSearch:
    def test_empty_query_is_passthrough(self):
        messages = [make_message("1")]

        result = search("", CONTACTS, messages)

        assert result.contacts == CONTACTS
        assert result.messages == messages
        assert result.matches == []

    def test_whitespace_query_is_passthrough(self):
        result = search("   ", CONTACTS, [])

        assert result.contacts == CONTACTS

    def test_direct_name_match(self):
        result = search("alice", CONTACTS, [])

        assert result.matches == ["alice@example.com"]
        assert result.ranked[0].score == 1.0
        assert "name" in result.ranked[0].matched_fields

    def test_typo_still_matches(self):
        result = search("Alise Smith", CONTACTS, [])

        assert result.matches[0] == "alice@example.com"

    def test_contact_surfaced_through_message_content(self):
        messages = [
            make_message(
                "1",
                subject="Quarterly roadmap",
                body="Draft of the roadmap for review",
                sender=Participant(name="Carol White", address="carol@example.com"),
            )
        ]

        result = search("roadmap", CONTACTS, messages)

        assert [m.id for m in result.messages] == ["1"]
        assert result.matches == ["carol@example.com"]
        assert result.ranked[0].score == 0.8
        assert "messages" in result.ranked[0].matched_fields

    def test_direct_hit_outranks_message_only_hit(self):
        messages = [
            make_message(
                "1",
                body="ask bob about it",
                sender=Participant(address="carol@example.com"),
            )
        ]

        result = search("bob", CONTACTS, messages)

        assert result.matches[0] == "bob@example.com"
        assert result.matches[1] == "carol@example.com"

    def test_unrelated_query_matches_nothing(self):
        result = search("zzzqqq", CONTACTS, [make_message("1")])

        assert result.contacts == []
        assert result.messages == []

    def test_single_character_tokens_are_ignored(self):
        result = search("a", CONTACTS, [make_message("1")])

        assert result.contacts == []
        assert result.messages == []
