"""Command line interface against a temporary snapshot file."""

import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

from concrete_passport.cli import main


class CliTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = Path(self.tmp.name)
        self.db = str(self.dir / "passports.db")

    def run_cli(self, *argv, caller="alice"):
        args = ["--db", self.db]
        if caller:
            args += ["--as", caller]
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(args + list(argv))
        return code, out.getvalue()


class TestLifecycle(CliTestCase):

    def test_create_update_finalize(self):
        code, out = self.run_cli("create", "PROD-001", "-l", "locA", "-m", "MIX-A")
        self.assertEqual(code, 0)
        self.assertIn("Passport 1 created", out)

        code, out = self.run_cli("update", "PROD-001", "-l", "locB")
        self.assertEqual(code, 0)
        self.assertIn("version 2", out)

        code, out = self.run_cli("finalize", "1", "-g", "M40", "-c", "0xcert")
        self.assertEqual(code, 0)

        code, out = self.run_cli("show", "PROD-001")
        shown = json.loads(out)
        self.assertEqual(shown["data_locator"], "locB")
        self.assertTrue(shown["is_finalized"])

    def test_errors_are_reported_by_kind(self):
        self.run_cli("create", "PROD-001", "-l", "locA")
        code, out = self.run_cli("update", "1", "-l", "locB", caller="bob")
        self.assertEqual(code, 1)
        self.assertIn("Forbidden", out)

        code, out = self.run_cli("show", "PROD-404")
        self.assertEqual(code, 1)
        self.assertIn("NotFound", out)

    def test_caller_required(self):
        code, out = self.run_cli("create", "PROD-001", "-l", "locA", caller=None)
        self.assertEqual(code, 1)
        self.assertIn("InvalidArgument", out)

    def test_history_and_consensus(self):
        self.run_cli("create", "PROD-001", "-l", "locA")
        code, out = self.run_cli("history", "PROD-001")
        self.assertEqual(json.loads(out), {"materials": [], "process_events": []})
        code, out = self.run_cli("consensus", "PROD-001")
        self.assertEqual(code, 2)
        self.assertIn("0/3", out)


class TestEventLog(CliTestCase):

    def test_verify_log_after_mutations(self):
        self.run_cli("create", "PROD-001", "-l", "locA")
        self.run_cli("update", "1", "-l", "locB")
        code, out = self.run_cli("verify-log")
        self.assertEqual(code, 0)
        self.assertIn("2 entries", out)

    def test_rejected_mutation_not_logged(self):
        self.run_cli("create", "PROD-001", "-l", "locA")
        self.run_cli("update", "1", "-l", "locB", caller="bob")
        code, out = self.run_cli("verify-log")
        self.assertIn("1 entries", out)


class TestCertificate(CliTestCase):

    def test_certificate_written(self):
        self.run_cli("create", "PROD-001", "-l", "locA")
        self.run_cli("finalize", "1", "-g", "M40", "-c", "0xcert")
        pdf = self.dir / "cert.pdf"
        code, _ = self.run_cli("certificate", "1", "-o", str(pdf))
        self.assertEqual(code, 0)
        self.assertTrue(pdf.read_bytes().startswith(b"%PDF"))

    def test_certificate_needs_finalized(self):
        self.run_cli("create", "PROD-001", "-l", "locA")
        code, out = self.run_cli("certificate", "1", "-o", str(self.dir / "cert.pdf"))
        self.assertEqual(code, 1)
        self.assertIn("NotFinalized", out)


class TestUtilities(CliTestCase):

    def test_hash(self):
        f = self.dir / "report.json"
        f.write_bytes(b"{}")
        code, out = self.run_cli("hash", "-f", str(f), caller=None)
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(),
                         "content:sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a")

    def test_keygen(self):
        key_file = self.dir / "v1.json"
        code, out = self.run_cli("keygen", "-i", "v1", "-o", str(key_file), caller=None)
        self.assertEqual(code, 0)
        data = json.loads(key_file.read_text())
        self.assertEqual(data["identity"], "v1")
        self.assertIn(data["public_key"], out)
        self.assertIn("signing_key", data)

    def test_no_command(self):
        code, _ = self.run_cli(caller=None)
        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
