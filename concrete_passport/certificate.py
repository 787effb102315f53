"""
Certificate rendering for finalized passports.

The certificate is a one-page PDF summarizing the passport, its provenance
and its attestations. A canonical JSON manifest of the same facts is hashed
and printed on the page, so a printed certificate can be checked against the
registry.
"""

import io
from typing import Any, Dict, List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from .canonicalization import canonicalize
from .errors import InvalidArgumentError
from .hashing import sha256_hex
from .models import MaterialBatch, Passport, ProcessEvent, TestResult, TestStatus, format_ts
from .validation import ConsensusStatus

MARGIN = 56
LINE = 14


def certificate_manifest(
    passport: Passport,
    materials: List[MaterialBatch],
    history: List[ProcessEvent],
    consensus: Optional[ConsensusStatus] = None,
    tests: Optional[List[TestResult]] = None,
) -> Dict[str, Any]:
    """
    Canonical summary of a finalized passport.

    Returns:
        {"manifest": {...}, "manifest_hash": "<sha256 hex>"}
    """
    manifest = {
        "passport": passport.to_dict(),
        "materials": [m.to_dict() for m in materials],
        "process_events": [e.to_dict() for e in history],
        "consensus": consensus.to_dict() if consensus is not None else None,
        "lab_tests": [t.to_dict() for t in (tests or [])],
    }
    return {"manifest": manifest, "manifest_hash": sha256_hex(canonicalize(manifest))}


class _Page:
    """Top-down text cursor over a reportlab canvas."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.width, self.height = A4
        self.y = self.height - MARGIN

    def text(self, s: str, font: str = "Helvetica", size: int = 10, indent: int = 0):
        if self.y < MARGIN:
            self.c.showPage()
            self.y = self.height - MARGIN
        self.c.setFont(font, size)
        self.c.drawString(MARGIN + indent, self.y, s[:110])
        self.y -= LINE if size <= 10 else size + 6

    def heading(self, s: str):
        self.y -= 4
        self.text(s, font="Helvetica-Bold", size=12)

    def rule(self):
        self.c.line(MARGIN, self.y + LINE // 2, self.width - MARGIN, self.y + LINE // 2)
        self.y -= 6


def render_certificate(
    passport: Passport,
    materials: List[MaterialBatch],
    history: List[ProcessEvent],
    consensus: Optional[ConsensusStatus] = None,
    tests: Optional[List[TestResult]] = None,
) -> bytes:
    if not passport.is_finalized:
        raise InvalidArgumentError(f"NotFinalized: passport {passport.id} has not been finalized",
                                   passport_id=passport.id)
    summary = certificate_manifest(passport, materials, history, consensus, tests)

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Concrete Passport Certificate {passport.package_key}")
    page = _Page(c)

    page.text("Concrete Passport Certificate", font="Helvetica-Bold", size=18)
    page.text(f"Package {passport.package_key}  (passport #{passport.id})", size=12)
    page.rule()

    page.text(f"Final grade:          {passport.final_grade}", font="Helvetica-Bold")
    page.text(f"Certification hash:   {passport.certification_hash}")
    page.text(f"Finalized at:         {format_ts(passport.finalized_at)}")
    page.text(f"Material reference:   {passport.material_id or '-'}")
    page.text(f"Owner:                {passport.owner}")
    page.text(f"Producing lab:        {passport.lab_identity or '-'}")
    page.text(f"Data package:         {passport.data_locator} (version {passport.version})")
    for slot, value in sorted(passport.derived_hashes.items()):
        page.text(f"{slot.value}: {value}", indent=12)

    page.heading("Material batches")
    if not materials:
        page.text("none recorded", indent=12)
    for m in materials:
        page.text(f"{m.batch_number}  {m.material_type}  {m.supplier_name}  cert {m.certificate_hash or '-'}",
                  indent=12)

    page.heading("Process history")
    if not history:
        page.text("none recorded", indent=12)
    for e in history:
        page.text(f"{format_ts(e.timestamp)}  {e.event_kind}  by {e.operator_identity}", indent=12)

    page.heading("Attestations")
    if consensus is not None:
        state = "reached" if consensus.reached else "not reached"
        page.text(f"Validator consensus {state}: {consensus.passed}/{consensus.required} passing "
                  f"({consensus.total} submissions)", indent=12)
    for t in tests or []:
        confirmed = f" confirmed by {t.validator_identity}" if t.status != TestStatus.PENDING else ""
        page.text(f"{t.test_kind.value} @ {t.curing_age}d: {t.result_summary}  [{t.status.value}]{confirmed}",
                  indent=12)

    page.rule()
    page.text(f"Manifest SHA-256: {summary['manifest_hash']}", font="Courier", size=8)

    c.showPage()
    c.save()
    return buf.getvalue()
