"""PDF certificate rendering."""

import unittest
from datetime import datetime, timedelta, timezone

from concrete_passport import InvalidArgumentError, ProvenanceRegistry, TestStatus
from concrete_passport.certificate import certificate_manifest, render_certificate


class TestCertificate(unittest.TestCase):

    def setUp(self):
        r = self.r = ProvenanceRegistry()
        self.p = r.create_passport("PROD-001", "MIX-A", "locA", "alice", lab_identity="lab-a")
        r.add_material_batch(self.p.id, "B-1", "cement", "Acme", "0xc1", None, "supplier")
        r.record_process_event(self.p.id, "printing", "op-1")
        r.authorize_lab("lab-a", "Lab A")
        r.authorize_lab("lab-b", "Lab B")
        t = r.submit_test_result(self.p.id, "Compression", "loc", datetime.now(timezone.utc) - timedelta(days=1),
                                 28, "41 MPa", "lab-a")
        r.validate_test_result(t.test_id, TestStatus.VALIDATED, "lab-b")

    def args(self):
        pid = self.p.id
        return (self.r.get_passport(pid), self.r.materials(pid), self.r.history(pid),
                self.r.consensus_status(pid), self.r.tests_for_passport(pid))

    def test_requires_finalized_passport(self):
        with self.assertRaises(InvalidArgumentError) as ctx:
            render_certificate(*self.args())
        self.assertIn("NotFinalized", ctx.exception.message)

    def test_renders_pdf(self):
        self.r.finalize(self.p.id, "M40", "0xcert", "alice")
        pdf = render_certificate(*self.args())
        self.assertTrue(pdf.startswith(b"%PDF"))
        self.assertGreater(len(pdf), 500)

    def test_manifest_is_stable(self):
        self.r.finalize(self.p.id, "M40", "0xcert", "alice")
        first = certificate_manifest(*self.args())
        second = certificate_manifest(*self.args())
        self.assertEqual(first["manifest_hash"], second["manifest_hash"])
        self.assertEqual(len(first["manifest_hash"]), 64)
        manifest = first["manifest"]
        self.assertEqual(manifest["passport"]["final_grade"], "M40")
        self.assertEqual(len(manifest["materials"]), 1)
        self.assertEqual(manifest["lab_tests"][0]["status"], "Validated")

    def test_manifest_changes_with_history(self):
        self.r.finalize(self.p.id, "M40", "0xcert", "alice")
        before = certificate_manifest(*self.args())["manifest_hash"]
        self.r.record_process_event(self.p.id, "inspection", "op-2")
        self.assertNotEqual(certificate_manifest(*self.args())["manifest_hash"], before)


if __name__ == "__main__":
    unittest.main()
