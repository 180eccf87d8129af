"""Tests for the report sinks (seedhunt/report.py)."""

import io
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from seedhunt.errors import ReportError, RunTerminated
from seedhunt.gitlab import IssuePayload
from seedhunt.report import ConsoleReportSink, GitlabReportSink
from seedhunt.types import TriageResult


def make_result(**overrides):
    fields = dict(
        seed=7,
        filtered_report='{\n  "Msg": "X"\n}\n',
        log_directory=Path("/tmp/logs"),
        commit_id="abc",
        captured_stdout="the stdout",
        captured_stderr="the stderr",
        exit_code=1,
    )
    fields.update(overrides)
    return TriageResult(**fields)


class TestConsoleReportSink(unittest.TestCase):
    """Test the no-tracker path."""

    def test_prints_everything_then_terminates(self):
        out, err = io.StringIO(), io.StringIO()
        sink = ConsoleReportSink(stdout=out, stderr=err)
        with self.assertRaises(RunTerminated) as ctx:
            sink.report(make_result())

        self.assertEqual(ctx.exception.seed, 7)
        self.assertEqual(ctx.exception.exit_code, 1)
        printed = out.getvalue()
        self.assertIn("stdout:", printed)
        self.assertIn("the stdout", printed)
        self.assertIn("stderr:", printed)
        self.assertIn("layer errors (filtered_output):", printed)
        self.assertIn('"Msg": "X"', printed)
        self.assertIn("the stderr", err.getvalue())
        self.assertLess(printed.index("stdout:"), printed.index("layer errors"))

    def test_empty_report_still_terminates(self):
        out, err = io.StringIO(), io.StringIO()
        sink = ConsoleReportSink(stdout=out, stderr=err)
        with self.assertRaises(RunTerminated):
            sink.report(make_result(filtered_report="", captured_stdout=None))
        self.assertIn("layer errors", out.getvalue())


class TestGitlabReportSink(unittest.TestCase):
    """Test issue filing and reporting errors."""

    def test_creates_issue_from_result(self):
        client = MagicMock()
        client.create_issue.return_value = {"web_url": "https://gitlab/i/1"}
        sink = GitlabReportSink(client)
        sink.report(make_result())

        payload = client.create_issue.call_args.args[0]
        self.assertIsInstance(payload, IssuePayload)
        self.assertEqual(payload.seed, 7)
        self.assertEqual(payload.commit_id, "abc")
        self.assertEqual(payload.stdout, "the stdout")
        self.assertEqual(payload.logs, Path("/tmp/logs"))
        self.assertEqual(sink.issues_created, 1)

    def test_report_error_is_logged_not_raised(self):
        client = MagicMock()
        client.create_issue.side_effect = ReportError("502 Bad Gateway")
        sink = GitlabReportSink(client)
        with self.assertLogs("seedhunt.report", level="ERROR") as logs:
            sink.report(make_result())
        self.assertIn("502 Bad Gateway", logs.output[0])
        self.assertEqual(sink.failed_reports, 1)
        self.assertEqual(sink.issues_created, 0)


if __name__ == "__main__":
    unittest.main()
