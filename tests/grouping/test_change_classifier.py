import unittest

from commit_sweep.grouping.change_classifier import classify_file


class TestChangeClassifier(unittest.TestCase):
    def test_classify_file_cases(self) -> None:
        cases = [
            ("tests/test_example.py", "test"),
            ("lib/foo_test.sh", "test"),
            ("web/button.spec.ts", "test"),
            ("pkg/handler.test.js", "test"),
            ("conftest.py", "test"),
            ("README.md", "doc"),
            ("docs/guide.txt", "doc"),
            ("LICENSE", "doc"),
            ("CHANGELOG.rst", "doc"),
            (".github/workflows/ci.yml", "config"),
            (".gitignore", "config"),
            ("Dockerfile", "config"),
            ("pyproject.toml", "config"),
            ("requirements-dev.txt", "config"),
            ("deploy/values.yaml", "config"),
            ("lib/session.sh", "source"),
            ("old.py", "source"),
            ("src/app/main.go", "source"),
        ]
        for file_path, expected in cases:
            with self.subTest(file=file_path):
                self.assertEqual(classify_file(file_path), expected)

    def test_first_matching_rule_wins(self) -> None:
        # A document inside a test directory is a test file
        self.assertEqual(classify_file("tests/README.md"), "test")
        # A YAML file under docs/ is documentation, not configuration
        self.assertEqual(classify_file("docs/mkdocs.yml"), "doc")
        # A test fixture under a dot-directory is still a test
        self.assertEqual(classify_file(".ci/tests/run.sh"), "test")

    def test_source_names_that_only_look_special(self) -> None:
        self.assertEqual(classify_file("lib/testing_utils.py"), "source")
        self.assertEqual(classify_file("src/docstring.py"), "source")


if __name__ == "__main__":
    unittest.main()
