"""Tests for fix-prompt generation, fix application and the interactive fix loop."""

import pytest
import yaml

from bmad.checklist.evaluator import ChecklistEvaluator
from bmad.checklist.fix_applier import FixApplier
from bmad.checklist.fix_loop import COPY_QUESTION, FixLoop
from bmad.checklist.fix_prompt import (
    FIX_END,
    FIX_START,
    QUESTIONS_END,
    QUESTIONS_START,
    FixPromptGenerator,
    build_fix_result,
    parse_fix_response,
)
from bmad.checklist.loader import parse_checklist
from bmad.checklist.models import ClarifyQuestion, Report, Status, ValidationResult
from bmad.lib.console import APPLY, EXIT, REFINE
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.versions import VersionStore
from bmad.runner.generator import output_path

from conftest import FakeClient, writes_yaml

CHECKLIST = {"sections": [{"id": "template", "criteria": [
    {"id": "who", "validation_prompts": [{"Q": "Is there a persona?", "A": "yes", "action_if_fail": "Name one"}]},
]}]}


def failed_result():
    return ValidationResult(
        section_path="template/who",
        question="Is there a persona?",
        expected="yes",
        actual="no",
        status=Status.FAIL,
        action_if_fail="Name one",
    )


def failing_report():
    return Report("3.1", "Pay by card", [failed_result()])


class TestParseFixResponse:

    def test_side_channel_fix_prompt(self, tmp_path):
        path = tmp_path / "fix.yaml"
        path.write_text("fix_prompt: |\n  Set persona to shopper\n")
        result = parse_fix_response("ignored", path)
        assert result.fix_prompt == "Set persona to shopper"
        assert not result.has_questions

    def test_side_channel_questions(self, tmp_path):
        path = tmp_path / "fix.yaml"
        path.write_text(yaml.safe_dump({"questions": [{"question": "Who pays?", "options": ["shopper"]}]}))
        result = parse_fix_response("", path)
        assert result.questions == [ClarifyQuestion(id="q1", text="Who pays?", options=["shopper"])]

    def test_markers_when_no_file(self, tmp_path):
        text = f"Thinking\n{FIX_START}\nSet persona\n{FIX_END}\n"
        assert parse_fix_response(text, tmp_path / "absent.yaml").fix_prompt == "Set persona"

    def test_question_markers(self, tmp_path):
        text = f"{QUESTIONS_START}\nquestions:\n  - id: who\n    question: Who?\n{QUESTIONS_END}"
        result = parse_fix_response(text, tmp_path / "absent.yaml")
        assert [q.id for q in result.questions] == ["who"]

    def test_both_is_an_error(self):
        with pytest.raises(BmadError, match="both"):
            build_fix_result("do it", [{"question": "why?"}])

    def test_neither_is_an_error(self, tmp_path):
        with pytest.raises(BmadError) as exc_info:
            parse_fix_response("no markers", tmp_path / "absent.yaml")
        assert exc_info.value.kind is ErrorKind.PARSE


class TestFixPromptGenerator:

    def test_writes_prompt_file(self, config, run_dir, docs, story_doc):
        side_channel = output_path(run_dir, "3.1", "fix-01-iter1-r0")
        client = FakeClient([writes_yaml(side_channel, {"fix_prompt": "Set persona to shopper"})])
        generator = FixPromptGenerator(config, client, run_dir, docs)

        result = generator.generate(story_doc, failed_result(), index=1, iteration=1, answers="- q1: Who?\n  Answer: shopper")

        assert result.fix_prompt == "Set persona to shopper"
        assert (run_dir / "01-3.1-fix-prompts.md").read_text() == "Set persona to shopper\n"
        prompt = client.calls[0].user_prompt
        assert "Failed check template/who" in prompt
        assert "Answer: shopper" in prompt
        assert "Name one" in prompt


class TestFixApplier:

    def test_edits_next_version(self, config, run_dir, story_doc):
        store = VersionStore(run_dir, "3.1")
        store.save_initial(story_doc.to_dict())

        def edit(system_prompt, user_prompt):
            path = store.path_for(2)
            data = yaml.safe_load(path.read_text())
            data["story"]["persona"] = "returning shopper"
            path.write_text(yaml.safe_dump(data))
            return "done"

        client = FakeClient([edit])
        doc = FixApplier(config, client, run_dir).apply(store, "Set persona", index=1, iteration=1)

        assert doc.story.persona == "returning shopper"
        assert store.current_version() == 2
        assert client.calls[0].mode.name == "full-access"
        assert "story-3.1-v02.yaml" in client.calls[0].user_prompt

    def test_broken_yaml_is_rejected(self, config, run_dir, story_doc):
        store = VersionStore(run_dir, "3.1")
        store.save_initial(story_doc.to_dict())

        def corrupt(system_prompt, user_prompt):
            store.path_for(2).write_text("story: [unclosed\n")
            return "done"

        with pytest.raises(BmadError) as exc_info:
            FixApplier(config, FakeClient([corrupt]), run_dir).apply(store, "x", 1, 1)
        assert exc_info.value.kind is ErrorKind.PARSE


class ScriptedCollector:
    """Stand-in for InputCollector with canned choices."""

    def __init__(self, choices, answers=None, feedback="", confirm=True):
        self.choices = list(choices)
        self.answers = answers or {}
        self.feedback = feedback
        self.confirm_answer = confirm
        self.shown = []
        self.asked = []
        self.confirmed = []

    def ask_questions(self, questions):
        self.asked.extend(questions)
        return {q.id: self.answers.get(q.id, "") for q in questions}

    def show_fix_prompt(self, fix_prompt):
        self.shown.append(fix_prompt)

    def ask_apply_refine_exit(self):
        return self.choices.pop(0)

    def ask_feedback(self):
        return self.feedback

    def confirm(self, message, default=None):
        self.confirmed.append(message)
        return self.confirm_answer


class FakeFixGenerator:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    def generate(self, doc, failed, index, iteration, **kwargs):
        self.calls.append(dict(index=index, iteration=iteration, **kwargs))
        return self.results.pop(0)


class FakeApplier:
    def __init__(self, store, doc):
        self.store = store
        self.doc = doc
        self.applied = []

    def apply(self, store, fix_prompt, index, iteration):
        self.applied.append(fix_prompt)
        store.save_next(self.doc.to_dict())
        return self.doc


class FakeEvaluator:
    def __init__(self, reports):
        self.reports = list(reports)

    def evaluate(self, doc):
        return self.reports.pop(0)


def fix(text):
    return build_fix_result(text, None)


def questions(*texts):
    return build_fix_result(None, [{"id": f"q{i}", "question": t} for i, t in enumerate(texts, 1)])


class TestFixLoop:

    @pytest.fixture
    def store(self, run_dir, story_doc):
        store = VersionStore(run_dir, "3.1")
        store.save_initial(story_doc.to_dict())
        return store

    def make_loop(self, store, story_doc, generator_results, choices, reports, max_rounds=None, **collector_kwargs):
        collector = ScriptedCollector(choices, **collector_kwargs)
        generator = FakeFixGenerator(generator_results)
        applier = FakeApplier(store, story_doc)
        shown_reports = []
        loop = FixLoop(
            FakeEvaluator(reports),
            generator,
            applier,
            collector,
            show_report=shown_reports.append,
            max_clarification_rounds=max_rounds,
        )
        return loop, collector, generator, applier, shown_reports

    def test_passing_report_does_nothing(self, store, story_doc, tmp_path):
        loop, collector, generator, *_ = self.make_loop(store, story_doc, [], [], [])
        passing = Report("3.1", "t")
        outcome = loop.run(story_doc, store, passing, canonical_path=tmp_path / "story.yaml")
        assert outcome.iterations == 0
        assert generator.calls == []
        assert collector.confirmed == []

    def test_questions_then_apply_then_copy(self, store, story_doc, tmp_path):
        canonical = tmp_path / "stories" / "3.1-pay-by-card.yaml"
        loop, collector, generator, applier, shown = self.make_loop(
            store, story_doc,
            [questions("Who is the persona?"), fix("Set persona to shopper")],
            [APPLY],
            [Report("3.1", "t")],
            answers={"q1": "shopper"},
        )

        outcome = loop.run(story_doc, store, failing_report(), canonical_path=canonical)

        assert outcome.iterations == 1
        assert not outcome.exited
        assert [q.text for q in collector.asked] == ["Who is the persona?"]
        assert "Answer: shopper" in generator.calls[1]["answers"]
        assert generator.calls[1]["round_number"] == 1
        assert applier.applied == ["Set persona to shopper"]
        assert len(shown) == 1
        assert collector.confirmed == [COPY_QUESTION]
        assert outcome.copied_to == canonical
        assert canonical.read_text() == store.latest_path().read_text()

    def test_refine_passes_feedback_and_previous_fix(self, store, story_doc):
        loop, _, generator, applier, _ = self.make_loop(
            store, story_doc,
            [fix("first try"), fix("second try")],
            [REFINE, APPLY],
            [Report("3.1", "t")],
            feedback="Use the PRD persona",
        )
        report = failing_report()
        loop.run(story_doc, store, report)
        assert report.results[0].fix_prompt == "second try"
        assert generator.calls[1]["feedback"] == "Use the PRD persona"
        assert generator.calls[1]["previous_fix"] == "first try"
        assert applier.applied == ["second try"]

    def test_exit_leaves_files_alone(self, store, story_doc, tmp_path):
        canonical = tmp_path / "story.yaml"
        loop, collector, _, applier, _ = self.make_loop(store, story_doc, [fix("x")], [EXIT], [])
        outcome = loop.run(story_doc, store, failing_report(), canonical_path=canonical)
        assert outcome.exited
        assert applier.applied == []
        assert outcome.report.results[0].fix_prompt is None
        assert not canonical.exists()
        assert collector.confirmed == []

    def test_declined_copy(self, store, story_doc, tmp_path):
        canonical = tmp_path / "story.yaml"
        loop, *_ = self.make_loop(store, story_doc, [fix("x")], [APPLY], [Report("3.1", "t")], confirm=False)
        outcome = loop.run(story_doc, store, failing_report(), canonical_path=canonical)
        assert outcome.copied_to is None
        assert not canonical.exists()

    def test_loops_until_checks_pass(self, store, story_doc):
        loop, _, generator, applier, shown = self.make_loop(
            store, story_doc,
            [fix("one"), fix("two")],
            [APPLY, APPLY],
            [failing_report(), Report("3.1", "t")],
        )
        outcome = loop.run(story_doc, store, failing_report())
        assert outcome.iterations == 2
        assert [c["iteration"] for c in generator.calls] == [1, 2]
        assert len(shown) == 2
        assert outcome.report.all_passed

    def test_clarification_rounds_are_bounded(self, store, story_doc):
        loop, *_ = self.make_loop(
            store, story_doc,
            [questions("a?"), questions("b?")],
            [],
            [],
            max_rounds=1,
        )
        with pytest.raises(BmadError) as exc_info:
            loop.run(story_doc, store, failing_report())
        assert exc_info.value.kind is ErrorKind.AI
        assert exc_info.value.stage == "fix_loop"


class TestFixLoopWiring:

    def test_real_collaborators(self, config, run_dir, docs, story_doc):
        """Evaluate, fix and re-evaluate with the real generator classes."""
        store = VersionStore(run_dir, "3.1")
        store.save_initial(story_doc.to_dict())

        def apply_fix(system_prompt, user_prompt):
            path = store.path_for(2)
            data = yaml.safe_load(path.read_text())
            data["story"]["persona"] = "returning shopper"
            path.write_text(yaml.safe_dump(data))
            return "done"

        client = FakeClient([
            "answer: no\n",
            writes_yaml(output_path(run_dir, "3.1", "fix-01-iter1-r0"), {"fix_prompt": "Name the persona"}),
            apply_fix,
            "answer: yes\n",
        ])
        evaluator = ChecklistEvaluator(config, client, run_dir, parse_checklist(CHECKLIST), docs)
        loop = FixLoop(
            evaluator,
            FixPromptGenerator(config, client, run_dir, docs),
            FixApplier(config, client, run_dir),
            ScriptedCollector([APPLY]),
            show_report=lambda report: None,
        )

        report = evaluator.evaluate(story_doc)
        assert report.fail_count == 1
        outcome = loop.run(story_doc, store, report)

        assert outcome.report.all_passed
        assert outcome.doc.story.persona == "returning shopper"
        assert store.current_version() == 2
