import unittest

from commit_sweep.grouping.change_classifier import classify_file
from commit_sweep.grouping.group_model import CommitGroup, FileChange
from commit_sweep.grouping.grouper import group_changes
from commit_sweep.message.commit_message_generator import (
    MAX_SUBJECT_LENGTH,
    CommitMessageGenerator,
    Overrides,
    build_subject,
    detect_commit_type,
    detect_scope,
    dominant_change_kind,
)


def plan_groups(specs, task_id="", **kwargs):
    changes = [FileChange(path=path, status=status, bucket=classify_file(path)) for path, status in specs]
    groups = group_changes(changes).groups
    return CommitMessageGenerator(task_id=task_id, **kwargs).generate_groups(groups)


class TestScenarios(unittest.TestCase):
    def test_single_modified_file_on_task_branch(self) -> None:
        (group,) = plan_groups([("lib/session.sh", " M")], task_id="br-123")
        self.assertEqual(group.type, "fix")
        self.assertEqual(group.scope, "lib")
        self.assertEqual(group.message, "fix(lib): update session.sh (br-123)")
        self.assertEqual(group.confidence.level, "high")

    def test_attached_test_does_not_change_type(self) -> None:
        (group,) = plan_groups([("lib/foo.sh", " M"), ("lib/foo_test.sh", "??")])
        self.assertEqual(group.type, "fix")
        self.assertEqual(group.scope, "lib")
        self.assertEqual(group.file_paths, ["lib/foo.sh", "lib/foo_test.sh"])

    def test_deleted_root_file(self) -> None:
        (group,) = plan_groups([("old.py", " D")])
        self.assertEqual(group.type, "chore")
        self.assertEqual(group.scope, "root")
        self.assertEqual(group.message, "chore: remove old.py")


class TestTypeDerivation(unittest.TestCase):
    def test_bucket_first(self) -> None:
        for path, expected in [("tests/test_a.py", "test"), ("docs/a.md", "docs"), ("ci.yml", "chore")]:
            with self.subTest(path=path):
                (group,) = plan_groups([(path, "??")])
                self.assertEqual(group.type, expected)

    def test_dominant_kind_precedence(self) -> None:
        self.assertEqual(dominant_change_kind(["A", "M"]), ("A", False))
        self.assertEqual(dominant_change_kind(["R", "D"]), ("R", False))
        self.assertEqual(dominant_change_kind(["M", "M", "A"]), ("M", False))
        self.assertEqual(dominant_change_kind(["A", "M", "D"]), ("A", True))

    def test_source_kinds(self) -> None:
        cases = [("??", "feat"), ("A ", "feat"), ("R ", "refactor"), (" D", "chore"), (" M", "fix")]
        for status, expected in cases:
            with self.subTest(status=status):
                orig = "src/was.py" if "R" in status else None
                group = CommitGroup(
                    id="g1",
                    type="",
                    scope="src",
                    bucket="source",
                    files=[FileChange(path="src/x.py", status=status, orig_path=orig)],
                )
                self.assertEqual(detect_commit_type(group).commit_type, expected)

    def test_ambiguous_mix_is_chore_and_penalized(self) -> None:
        (group,) = plan_groups([("src/a.py", "??"), ("src/b.py", " M"), ("src/c.py", " D")])
        self.assertEqual(group.type, "chore")
        self.assertIn("ambiguous_type", group.confidence.factors)


class TestSubject(unittest.TestCase):
    def test_scope_and_root(self) -> None:
        self.assertEqual(build_subject("feat", "api", "add x.py"), "feat(api): add x.py")
        self.assertEqual(build_subject("docs", "root", "update README.md", "br-1"), "docs: update README.md (br-1)")

    def test_detect_scope(self) -> None:
        self.assertEqual(detect_scope(["b/1", "a/2", "b/3", "top"]), "b")
        self.assertEqual(detect_scope(["b/1", "a/2"]), "a")
        self.assertEqual(detect_scope(["x.py", "y.py"]), "root")

    def test_truncation_keeps_task_suffix(self) -> None:
        subject = build_subject("feat", "service", "add " + "very_long_name_" * 8 + ".py", "PROJ-1234")
        self.assertEqual(len(subject), MAX_SUBJECT_LENGTH)
        self.assertTrue(subject.endswith("... (PROJ-1234)"))
        self.assertTrue(subject.startswith("feat(service): add very_long_name_"))

    def test_overlong_task_id_is_left_to_the_body(self) -> None:
        task_id = "TICKET-" + "9" * 70
        subject = build_subject("feat", "service", "add " + "very_long_name_" * 8 + ".py", task_id)
        self.assertEqual(len(subject), MAX_SUBJECT_LENGTH)
        self.assertTrue(subject.startswith("feat(service): add very_long_name_"))
        self.assertTrue(subject.endswith("..."))
        self.assertNotIn("TICKET", subject)

    def test_multi_file_description(self) -> None:
        (group,) = plan_groups([("src/a.py", "??"), ("src/b.py", "??")])
        self.assertEqual(group.message, "feat(src): add 2 source files")

    def test_rename_description(self) -> None:
        group = CommitGroup(
            id="g1",
            type="",
            scope="src",
            bucket="source",
            files=[FileChange(path="src/new.py", status="R ", orig_path="src/old.py")],
        )
        generated = CommitMessageGenerator().generate(group)
        self.assertEqual(generated.message, "refactor(src): rename old.py to new.py")


class TestGenerator(unittest.TestCase):
    def test_overrides(self) -> None:
        (group,) = plan_groups(
            [("lib/session.sh", " M")],
            task_id="br-9",
            overrides=Overrides(commit_type="refactor", scope="core", message="tidy up"),
        )
        self.assertEqual(group.message, "refactor(core): tidy up (br-9)")

    def test_without_task_id_suffix(self) -> None:
        (group,) = plan_groups([("lib/session.sh", " M")], task_id="br-9", include_task_id=False)
        self.assertEqual(group.message, "fix(lib): update session.sh")
        # The task still counts towards confidence
        self.assertIn("task_id", group.confidence.factors)

    def test_body_lists_files_and_task(self) -> None:
        (group,) = plan_groups(
            [("lib/foo.sh", " M"), ("lib/foo_test.sh", "??")],
            task_id="br-5",
            task_title="Fix session expiry",
            include_body=True,
        )
        self.assertEqual(
            group.body,
            "- modified: lib/foo.sh\n- added: lib/foo_test.sh\n\nTask: br-5 Fix session expiry",
        )

    def test_generation_is_deterministic(self) -> None:
        specs = [("src/a.py", " M"), ("src/a_test.py", "??"), ("README.md", " M")]
        self.assertEqual(plan_groups(specs, task_id="br-1"), plan_groups(specs, task_id="br-1"))


if __name__ == "__main__":
    unittest.main()
