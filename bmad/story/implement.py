"""
Story implementation pipeline.

``us implement`` runs these steps in order, or the subset picked with
``--steps``:

    validate_story      story document passes the semantic checks
    create_branch       story branch is checked out
    merge_scenarios     story scenarios merged into the requirements file
    generate_tests      one failing test per pending requirements scenario
    validate_tests      AI review of the generated tests
    validate_scenarios  every requirements scenario id appears in a test
    implement_feature   AI edits the code until the test command passes

The requirements file is a YAML mapping::

    scenarios:
      INT-012:
        description: "..."
        merged_steps: {given: ..., when: ..., then: ...}
        implementation_status: {status: pending}

When no test command is configured the baseline, red-phase and fix-loop
test runs are skipped and implement_feature makes a single attempt.
"""

import logging
import re
import shlex
import shutil
from pathlib import Path
from typing import Any, Optional

import yaml

from bmad.agents.modes import FULL_ACCESS, TEST_WRITER, edit_mode
from bmad.lib import git
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.parsing import first_line, read_side_channel
from bmad.lib.prompts import render_prompt
from bmad.lib.shell import CommandResult, run_command
from bmad.lib.versions import dump_yaml
from bmad.runner.generator import Generator, artifact_path, output_path
from bmad.story.generators import StoryContext
from bmad.story.models import StoryDocument
from bmad.story.validation import validate_story_document

logger = logging.getLogger(__name__)

STEP_VALIDATE_STORY = "validate_story"
STEP_CREATE_BRANCH = "create_branch"
STEP_MERGE_SCENARIOS = "merge_scenarios"
STEP_GENERATE_TESTS = "generate_tests"
STEP_VALIDATE_TESTS = "validate_tests"
STEP_VALIDATE_SCENARIOS = "validate_scenarios"
STEP_IMPLEMENT_FEATURE = "implement_feature"

STEPS = (
    STEP_VALIDATE_STORY,
    STEP_CREATE_BRANCH,
    STEP_MERGE_SCENARIOS,
    STEP_GENERATE_TESTS,
    STEP_VALIDATE_TESTS,
    STEP_VALIDATE_SCENARIOS,
    STEP_IMPLEMENT_FEATURE,
)

PENDING_STATUS = "pending"
MERGED_FILENAME = "requirements-merged.yaml"
BACKUP_SUFFIX = ".backup"

# Test descriptions carry the scenario id: "INT-012: rejects expired card"
TEST_ID_PATTERN = re.compile(r"""['"]([\w.-]+-\d+):""")


def parse_steps(text: Optional[str]) -> list[str]:
    """
    Parse a comma-separated step list into pipeline order.

    Empty input selects every step. Unknown names raise ValueError listing
    the valid ones.
    """
    if text is None or not text.strip():
        return list(STEPS)
    wanted = {name.strip() for name in text.split(",") if name.strip()}
    unknown = sorted(wanted - set(STEPS))
    if unknown:
        raise ValueError(f"Unknown step(s): {', '.join(unknown)}. Valid steps: {', '.join(STEPS)}")
    return [step for step in STEPS if step in wanted]


def load_requirements(path: Path) -> dict:
    """Load a requirements file; a missing file is an empty one."""
    if not path.exists():
        return {"scenarios": {}}
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise BmadError(ErrorKind.STORE, f"Cannot read requirements file {path}") from e
    except yaml.YAMLError as e:
        raise BmadError(ErrorKind.PARSE, f"Invalid YAML in requirements file {path.name}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise BmadError(ErrorKind.PARSE, f"Requirements file {path.name} must contain a mapping")
    scenarios = data.setdefault("scenarios", {})
    if scenarios is None:
        data["scenarios"] = {}
    elif not isinstance(scenarios, dict):
        raise BmadError(ErrorKind.PARSE, f"'scenarios' in {path.name} must be a mapping")
    return data


def pending_scenarios(requirements: dict) -> dict[str, Any]:
    """Scenarios whose implementation_status.status is pending, in file order."""
    pending = {}
    for scenario_id, scenario in requirements.get("scenarios", {}).items():
        status = ((scenario or {}).get("implementation_status") or {}).get("status")
        if status == PENDING_STATUS:
            pending[str(scenario_id)] = scenario
    return pending


def find_test_ids(tests_dir: Path) -> set[str]:
    """Scenario ids quoted at the start of test descriptions under ``tests_dir``."""
    ids = set()
    if not tests_dir.is_dir():
        return ids
    for path in sorted(tests_dir.rglob("*")):
        if not path.is_file():
            continue
        try:
            text = path.read_text(errors="ignore")
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot read test file {path}") from e
        ids.update(TEST_ID_PATTERN.findall(text))
    return ids


class ImplementPipeline:
    """Runs the implement steps for one story."""

    def __init__(self, ctx: StoryContext, doc: StoryDocument, story_path: Path, force: bool = False):
        self.ctx = ctx
        self.config = ctx.config
        self.doc = doc
        self.story_path = story_path
        self.force = force
        self.story_id = doc.story.id
        self.project_root = self.config.path.resolve().parent

    def run(self, steps: list[str]) -> list[str]:
        """Run ``steps`` in pipeline order; returns one summary line per step."""
        handlers = {
            STEP_VALIDATE_STORY: self.validate_story,
            STEP_CREATE_BRANCH: self.create_branch,
            STEP_MERGE_SCENARIOS: self.merge_scenarios,
            STEP_GENERATE_TESTS: self.generate_tests,
            STEP_VALIDATE_TESTS: self.validate_tests,
            STEP_VALIDATE_SCENARIOS: self.validate_scenarios,
            STEP_IMPLEMENT_FEATURE: self.implement_feature,
        }
        ordered = [step for step in STEPS if step in steps]
        logger.info(f"Implementing story {self.story_id}: {', '.join(ordered)}")

        summaries = []
        for i, step in enumerate(ordered, 1):
            if self.ctx.cancel is not None:
                self.ctx.cancel.raise_if_cancelled(step)
            logger.info(f"[implement] Step {i}/{len(ordered)}: {step}")
            try:
                summary = handlers[step]()
            except BmadError as e:
                raise e.in_stage(step) from e
            logger.info(f"[implement] {step}: {summary}")
            summaries.append(f"{step}: {summary}")
        return summaries

    # Steps

    def validate_story(self) -> str:
        validate_story_document(self.doc)
        return "story is valid"

    def create_branch(self) -> str:
        branch = git.ensure_story_branch(
            self.story_id, self.doc.story.title, force=self.force, cwd=self.project_root, cancel=self.ctx.cancel
        )
        return f"on branch {branch}"

    def merge_scenarios(self) -> str:
        requirements = self.config.requirements
        merged = Path(self.ctx.run_dir) / MERGED_FILENAME
        self._write(merged, dump_yaml(load_requirements(requirements)))
        logger.info(f"Cloned {requirements} to {merged}")

        for scenario in self.doc.scenarios:
            self._merge_generator(scenario, merged).generate()

        # Reject a broken merge before it replaces the real file
        load_requirements(merged)

        if requirements.exists():
            backup = requirements.with_name(requirements.name + BACKUP_SUFFIX)
            try:
                shutil.copyfile(requirements, backup)
            except OSError as e:
                raise BmadError(ErrorKind.STORE, f"Cannot back up {requirements}") from e
            logger.info(f"Backed up requirements to {backup}")
        self._write(requirements, merged.read_text())
        return f"merged {len(self.doc.scenarios)} scenario(s) into {requirements.name}"

    def generate_tests(self) -> str:
        baseline = self._run_tests("baseline")
        if baseline is not None and not baseline.success:
            raise BmadError(
                ErrorKind.VALIDATION,
                "Baseline tests fail; fix them before generating new tests",
                details={"output": baseline.output},
            )

        pending = pending_scenarios(load_requirements(self.config.requirements))
        written = 0
        for scenario_id, scenario in pending.items():
            try:
                self._test_generator(scenario_id, scenario).generate()
            except BmadError as e:
                if e.cancelled:
                    raise
                logger.warning(f"Skipping scenario {scenario_id}: {e.message}")
                continue
            written += 1

        red = self._run_tests("red")
        if red is not None and red.success:
            raise BmadError(
                ErrorKind.VALIDATION,
                "Generated tests pass before the feature is implemented",
                details={"output": red.output},
            )
        return f"wrote tests for {written} of {len(pending)} pending scenario(s)"

    def validate_tests(self) -> str:
        result = self._test_review_generator().generate()
        if result is None:
            return "no review result written"
        return (
            f"scanned {result.get('files_scanned', 0)} file(s), "
            f"fixed {result.get('issues_fixed', 0)} of {result.get('issues_found', 0)} issue(s)"
        )

    def validate_scenarios(self) -> str:
        scenario_ids = [str(i) for i in load_requirements(self.config.requirements)["scenarios"]]
        test_ids = find_test_ids(self.config.tests_dir)
        missing = [i for i in scenario_ids if i not in test_ids]
        extra = sorted(test_ids - set(scenario_ids))
        if extra:
            logger.info(f"Tests without a requirements scenario: {', '.join(extra)}")
        if missing:
            for scenario_id in missing:
                logger.warning(f"Missing test for scenario {scenario_id}")
            raise BmadError(
                ErrorKind.VALIDATION,
                f"{len(missing)} scenario(s) have no test: {', '.join(missing)}",
                details={"predicate": "scenario_has_test", "missing": missing},
            )
        return f"all {len(scenario_ids)} scenario(s) have tests"

    def implement_feature(self) -> str:
        if not self.config.test_command:
            logger.warning("No test command configured; making a single implementation attempt")
            return self._implement_generator(1, 1, "").generate()

        max_attempts = self.config.max_implement_attempts
        for attempt in range(1, max_attempts + 1):
            result = self._run_tests(f"attempt-{attempt}")
            if result.success:
                return f"tests pass after {attempt - 1} attempt(s)"
            logger.info(f"Tests failing; implementation attempt {attempt}/{max_attempts}")
            summary = self._implement_generator(attempt, max_attempts, result.output).generate()
            logger.info(f"Attempt {attempt} finished: {summary}")

        if self._run_tests("final").success:
            return f"tests pass after {max_attempts} attempt(s)"
        raise BmadError(
            ErrorKind.VALIDATION,
            f"Tests still fail after {max_attempts} implementation attempts",
            details={"attempts": max_attempts},
        )

    # Helpers

    def _write(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot write {path}") from e

    def _run_tests(self, phase: str) -> Optional[CommandResult]:
        """Run the test command and keep its output in the run directory."""
        command = self.config.test_command
        if not command:
            logger.info(f"No test command configured; skipping {phase} test run")
            return None
        logger.info(f"Running tests ({phase}): {command}")
        result = run_command(
            shlex.split(command),
            cwd=self.project_root,
            timeout=self.config.engine.timeout,
            cancel=self.ctx.cancel,
        )
        out = artifact_path(self.ctx.run_dir, self.story_id, f"tests-{phase}", ".txt")
        try:
            out.write_text(result.output)
        except OSError as e:
            logger.warning(f"Cannot save test output to {out}: {e}")
        logger.info(f"Tests ({phase}) {'passed' if result.success else 'failed'}")
        return result

    def _generator(self, name: str, template: str, data: dict, parse_response, mode, validate=None) -> Generator:
        def build_prompts(values: dict) -> tuple[str, str]:
            system = render_prompt(self.config.template(f"{template}_system"), **values)
            user = render_prompt(self.config.template(template), reference=self.ctx.docs.section(), **values)
            return system, user

        return Generator(
            self.ctx.client,
            self.ctx.run_dir,
            self.story_id,
            name,
            load_data=lambda: {"story": self.doc.story, **data},
            build_prompts=build_prompts,
            parse_response=parse_response,
            validate=validate,
            model=self.config.engine.model,
            mode=mode,
            cancel=self.ctx.cancel,
        )

    def _merge_generator(self, scenario, merged: Path) -> Generator:
        return self._generator(
            f"merge-{scenario.id}",
            "merge_scenarios",
            {"scenario": scenario, "scenario_yaml": dump_yaml(scenario.to_dict()), "merged_file": merged},
            parse_response=lambda response: first_line(response, scenario.id),
            mode=edit_mode(self.ctx.run_dir),
        )

    def _test_generator(self, scenario_id: str, scenario: Any) -> Generator:
        return self._generator(
            f"tests-{scenario_id}",
            "generate_tests",
            {
                "scenario_id": scenario_id,
                "scenario_yaml": dump_yaml({scenario_id: scenario}),
                "tests_dir": self.config.tests_dir,
            },
            parse_response=lambda response: first_line(response),
            mode=TEST_WRITER,
        )

    def _test_review_generator(self) -> Generator:
        name = "validate_tests"
        key = "test_validation"
        out_file = output_path(self.ctx.run_dir, self.story_id, name)

        def parse_response(_response: str) -> Optional[dict]:
            if not out_file.exists():
                logger.warning(f"Test review wrote no {out_file.name}; continuing")
                return None
            result = read_side_channel(out_file, key)
            if not isinstance(result, dict):
                raise BmadError(ErrorKind.PARSE, f"'{key}' in {out_file.name} must be a mapping")
            return result

        def validate(result: Optional[dict]) -> None:
            unfixed = (result or {}).get("unfixed_issues") or []
            if unfixed:
                raise BmadError(
                    ErrorKind.VALIDATION,
                    f"Test review left {len(unfixed)} unfixed issue(s): {'; '.join(map(str, unfixed))}",
                    details={"predicate": "tests_reviewed_clean", "unfixed_issues": unfixed},
                )

        return self._generator(
            name,
            name,
            {"tests_dir": self.config.tests_dir, "output_file": out_file, "output_key": key},
            parse_response=parse_response,
            mode=TEST_WRITER,
            validate=validate,
        )

    def _implement_generator(self, attempt: int, max_attempts: int, test_output: str) -> Generator:
        test_section = f"## Failing test output\n\n```\n{test_output}\n```\n" if test_output else ""
        return self._generator(
            f"implement-{attempt}",
            "implement_story",
            {
                "story_yaml": dump_yaml(self.doc.to_dict()),
                "story_file": self.story_path,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "test_section": test_section,
            },
            parse_response=lambda response: first_line(response, "Implementation finished"),
            mode=FULL_ACCESS,
        )
