"""
Tests for request construction and the interactive client loop
"""
import pytest

from watchlist import messages as m
from watchlist.client import build_request, format_entry, run_interactive
from watchlist.errors import ParseError
from watchlist.models import Entry, MediaType, Status


def scripted(*answers):
    """An `ask` that replays answers in order and records the prompts."""
    queue = list(answers)
    prompts = []

    def ask(prompt):
        prompts.append(prompt)
        return queue.pop(0)
    ask.prompts = prompts
    ask.remaining = queue
    return ask


class TestBuildRequest:
    """Tests for turning prompt answers into request lines"""

    def test_create_with_rating(self):
        ask = scripted("Dune", "1", "sci-fi", "3", "5")
        assert build_request("create", ask) == "c:Dune:1:sci-fi:3:5"
        assert "rating" in ask.prompts[-1]

    def test_create_plan_to_watch_skips_rating_prompt(self):
        ask = scripted("Akira", "4", "classic", "1")
        assert build_request("c", ask) == "c:Akira:4:classic:1"
        assert len(ask.prompts) == 4

    def test_find(self):
        assert build_request("F", scripted("Dune")) == "f:Dune"

    def test_display(self):
        assert build_request("display", scripted()) == "d"

    def test_update_status(self):
        ask = scripted("Dune", "Status", "1")
        assert build_request("update", ask) == "u:s:Dune:1"

    def test_update_media_type_picks_the_field_by_first_letter(self):
        assert build_request("u", scripted("Dune", "media type", "2")) == "u:m:Dune:2"

    def test_remove(self):
        assert build_request("remove", scripted("Dune")) == "r:Dune"

    @pytest.mark.parametrize("op, answers", [
        ("x", ()),
        ("c", ("Dune: Part Two", "1", "sci-fi", "1")),
        ("c", ("Dune", "movie", "sci-fi", "1")),
        ("c", ("Dune", "1", "sci-fi", "3", "9")),
        ("u", ("Dune", "quality", "1")),
        ("u", ("Dune", "rating", "high")),
        ("f", ("",)),
    ])
    def test_bad_input_never_builds_a_request(self, op, answers):
        with pytest.raises(ParseError):
            build_request(op, scripted(*answers))


class TestFormatEntry:
    """Tests for the operator-facing entry line"""

    def test_rated(self):
        entry = Entry("Dune", MediaType.MOVIE, "sci-fi", Status.COMPLETED, 5)
        assert format_entry(entry) == "Dune [movie] sci-fi - completed, rated 5/5"

    def test_unrated(self):
        entry = Entry("Lost", MediaType.TV_SHOW, "island", Status.WATCHING)
        assert format_entry(entry) == "Lost [tv show] island - watching"


class TestRunInteractive:
    """Tests for the whole prompt loop against a live session"""

    def test_register_create_find_display(self, converse, entry_table):
        ask = scripted(
            "1", "alice",
            "c", "Dune", "1", "sci-fi", "3", "5", "yes",
            "z",
            "f", "Dune", "y",
            "d", "no",
        )
        said = []

        async def script(client):
            await run_interactive(client, ask=ask, read_password=lambda _: "secret1", say=said.append)

        converse(script)
        assert ask.remaining == []
        assert "Registered alice." in said
        assert any(line.startswith("Invalid input") for line in said)
        assert "Dune [movie] sci-fi - completed, rated 5/5" in said
        assert "1 entries." in said
        assert entry_table.find("Dune").rating == 5

    def test_login_with_wrong_password_stops(self, converse):
        async def register(client):
            await client.register("alice", "secret1")
        converse(register)

        ask = scripted("2", "alice")
        said = []

        async def script(client):
            await run_interactive(client, ask=ask, read_password=lambda _: "wrong", say=said.append)

        converse(script)
        assert said == ["Passwords do not match."]

    def test_errors_are_printed_and_loop_continues(self, converse):
        ask = scripted("1", "bob", "r", "Missing", "y", "d", "n")
        said = []

        async def script(client):
            await run_interactive(client, ask=ask, read_password=lambda _: "pw", say=said.append)

        converse(script)
        assert any(line.startswith("Error (NotFound)") for line in said)
        assert "0 entries." in said

    def test_bad_auth_choice(self, converse):
        said = []

        async def script(client):
            await run_interactive(client, ask=scripted("3"), read_password=lambda _: "", say=said.append)

        converse(script)
        assert said == ["Please enter 1 or 2."]
