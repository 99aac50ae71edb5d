"""Tests for the prompt library and how the active prompt reaches providers."""
import json

import pytest

from oblivion.errors import InvalidPromptImport, PromptNotFound, TemplateNotFound
from oblivion.models.schemas import QueryOptions
from oblivion.services.aggregator import QueryAggregator
from oblivion.services.prompts import BUILTIN_PROMPTS, DISCLAIMER, SECURITY_LEVELS, PromptLibrary, fill


@pytest.fixture
def prompts():
    return PromptLibrary()


class TestLibrary:

    def test_builtins_seeded(self, prompts):
        assert {r.prompt_id for r in prompts.list("builtin")} == set(BUILTIN_PROMPTS)

    def test_add_get_delete(self, prompts):
        prompts.add("reviewer", "Reviewer", "You review code.")
        record = prompts.get("reviewer")
        assert record.category == "custom"
        assert record.use_count == 0

        prompts.delete("reviewer")
        with pytest.raises(PromptNotFound):
            prompts.get("reviewer")
        with pytest.raises(PromptNotFound):
            prompts.delete("reviewer")

    def test_list_by_category(self, prompts):
        prompts.add("a", "A", "one", category="team")
        prompts.add("b", "B", "two", category="team")
        assert sorted(r.prompt_id for r in prompts.list("team")) == ["a", "b"]

    def test_search_name_and_text(self, prompts):
        prompts.add("reviewer", "Strict Reviewer", "You review pull requests.")
        assert [r.prompt_id for r in prompts.search("strict")] == ["reviewer"]
        assert "reviewer" in [r.prompt_id for r in prompts.search("PULL REQUEST")]
        assert prompts.search("no such words anywhere") == []


class TestActivePrompt:

    def test_set_active_counts_use(self, prompts):
        prompts.add("reviewer", "Reviewer", "You review code.")
        prompts.set_active("reviewer")
        record = prompts.set_active("reviewer")

        assert record.use_count == 2
        assert record.last_used is not None
        assert prompts.system_prompt() == "You review code."

    def test_unknown_prompt(self, prompts):
        with pytest.raises(PromptNotFound):
            prompts.set_active("missing")
        assert prompts.active() is None

    def test_clear_and_delete_deactivate(self, prompts):
        prompts.add("reviewer", "Reviewer", "You review code.")
        prompts.set_active("reviewer")
        prompts.clear_active()
        assert prompts.system_prompt() is None

        prompts.set_active("reviewer")
        prompts.delete("reviewer")
        assert prompts.active() is None

    def test_non_system_prompt_not_applied(self, prompts):
        prompts.add("note", "Note", "Just a note", is_system=False)
        prompts.set_active("note")
        assert prompts.system_prompt() is None

    def test_build_complete_prompt(self, prompts):
        assert prompts.build_complete_prompt("hi") == "User: hi\n\nAssistant: "

        prompts.add("terse", "Terse", "Answer in one word.")
        prompts.set_active("terse")
        text = prompts.build_complete_prompt("hi", include_disclaimer=True)
        assert text.startswith("Answer in one word.\n\n")
        assert DISCLAIMER in text
        assert text.endswith("User: hi\n\nAssistant: ")


class TestTemplates:

    def test_fill_reports_missing(self, prompts):
        filled = prompts.fill_template("code_review", {"language": "Go", "security_focus": "injection"})
        assert "security code review of Go code" in filled.prompt
        assert "{language}" not in filled.prompt
        assert filled.missing == ["quality_standards"]
        assert filled.category == "generated"

    def test_unknown_template(self, prompts):
        with pytest.raises(TemplateNotFound):
            prompts.fill_template("nope", {})

    def test_fill_leaves_other_braces(self):
        assert fill("{a} and {b} and {}", {"a": "x"}) == "x and {b} and {}"

    def test_generated_prompts(self, prompts):
        assert prompts.security_prompt("expert").endswith("authorised and legal.")
        assert prompts.security_prompt("unknown-level").endswith(SECURITY_LEVELS["basic"])
        code = prompts.code_prompt("Rust", "beginner")
        assert "Specialise in Rust" in code
        assert code.endswith("detailed explanations.")


class TestImportExport:

    def test_import_skips_incomplete(self, prompts):
        data = {
            "one": {"name": "One", "prompt": "first"},
            "two": {"name": "Two"},
            "three": "not an object",
        }
        assert prompts.import_prompts(json.dumps(data)) == 1
        assert prompts.get("one").category == "imported"

    @pytest.mark.parametrize("data", ["{not json", "[1, 2]"])
    def test_import_rejects_non_object(self, prompts, data):
        with pytest.raises(InvalidPromptImport):
            prompts.import_prompts(data)

    def test_export_then_import_elsewhere(self, prompts):
        prompts.add("reviewer", "Reviewer", "You review code.", category="team")
        other = PromptLibrary()
        other.import_prompts(prompts.export_prompts())
        assert other.get("reviewer").category == "team"

    def test_persisted_across_instances(self, tmp_path):
        path = tmp_path / "prompts.json"
        PromptLibrary(path).add("reviewer", "Reviewer", "You review code.")

        reopened = PromptLibrary(path)
        assert reopened.get("reviewer").prompt == "You review code."
        # Built-ins are seeded, not stored
        assert set(json.loads(path.read_text())) == {"reviewer"}

    def test_stats(self, prompts):
        prompts.add("a", "A", "one")
        prompts.set_active("a")
        stats = prompts.stats()
        assert stats.total == len(BUILTIN_PROMPTS) + 1
        assert stats.most_used[0].prompt_id == "a"
        assert [r.prompt_id for r in stats.recently_used] == ["a"]
        assert "builtin" in stats.categories


class TestActivePromptInBroadcast:

    @pytest.fixture
    def aggregator(self, fleet, ledger, prompts):
        return QueryAggregator(fleet, timeout_seconds=2.0, ledger=ledger, prompts=prompts)

    @pytest.mark.asyncio
    async def test_applied_when_no_system_prompt(self, fleet, aggregator, prompts, scripts):
        prompts.add("terse", "Terse", "Answer in one word.")
        prompts.set_active("terse")
        fleet.add_session("alpha", "m1")

        await aggregator.broadcast("2+2?")

        assert scripts["alpha/m1"].system_prompts == ["Answer in one word."]
        assert scripts["alpha/m1"].prompts == ["2+2?"]

    @pytest.mark.asyncio
    async def test_explicit_system_prompt_wins(self, fleet, aggregator, prompts, scripts):
        prompts.add("terse", "Terse", "Answer in one word.")
        prompts.set_active("terse")
        fleet.add_session("alpha", "m1")

        await aggregator.broadcast("2+2?", QueryOptions(system_prompt="Explain fully."))

        assert scripts["alpha/m1"].system_prompts == ["Explain fully."]

    @pytest.mark.asyncio
    async def test_nothing_active(self, fleet, aggregator, scripts):
        fleet.add_session("alpha", "m1")
        await aggregator.broadcast("2+2?")
        assert scripts["alpha/m1"].system_prompts == [None]
