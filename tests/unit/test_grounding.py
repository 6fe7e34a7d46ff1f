"""
Grounding Verifier Tests
=========================

The verifier's core guarantee: a numeric claim is never asserted
silently. Every sentence with a detected amount, date, count or code is
either covered by a citation snippet containing one of its values, or is
followed by a [NEEDS EVIDENCE: ...] marker.

Also covers sentence segmentation, evidence-gap collection and
idempotence (re-verifying patched sections changes nothing).
"""

from __future__ import annotations

import pytest

from appealground.verify.grounding import (
    GENERIC_MARKER_TEXT,
    MARKER_PATTERN,
    GroundingVerifier,
    citation_covers_value,
    collect_evidence_gaps,
    describe_missing_values,
    extract_claim_values,
    has_evidence_marker,
    has_numeric_claim,
    needs_evidence_marker,
    split_sentences,
)
from tests.conftest import make_citation, make_section


@pytest.fixture
def verifier() -> GroundingVerifier:
    return GroundingVerifier()


# ── Claim Detection ────────────────────────────────────────────────

class TestNumericClaimDetection:

    @pytest.mark.parametrize("sentence", [
        "Patient owes $450.00 for this service.",
        "The balance is $1,250 today.",
        "A fee of 300 dollars applies.",
        "Service was rendered on 2025-02-14.",
        "Your letter dated March 3, 2025 denied coverage.",
        "The patient attended 12 sessions.",
        "The plan pays 80% of allowed charges.",
        "Appeals must be filed within 180 days.",
        "Therapy is limited to 20 per year.",
        "Billed under CPT 97110.",
        "Diagnosis ICD-10 applies.",
    ])
    def test_flagged(self, sentence):
        assert has_numeric_claim(sentence)

    @pytest.mark.parametrize("sentence", [
        "We respectfully disagree with this decision.",
        "Please review the enclosed records.",
        "",
    ])
    def test_not_flagged(self, sentence):
        assert not has_numeric_claim(sentence)

    def test_marker_detection_is_case_insensitive(self):
        assert has_evidence_marker("Text [needs evidence: notes]")
        assert not has_evidence_marker("Text [NEEDS EVIDENCE:]")


class TestCoverage:

    def test_extract_claim_values(self):
        assert extract_claim_values("CPT 97110 billed at $1,200.00") == [
            "$1200.00", "97110", "1200.00", "97110",
        ]

    def test_no_values_needs_no_citation(self):
        assert citation_covers_value("We disagree.", [])

    def test_covered_by_comma_stripped_snippet(self):
        citation = make_citation("Patient responsibility: $1,250.00")
        assert citation_covers_value("You billed $1250.00 for therapy.", [citation])

    def test_not_covered_by_unrelated_snippet(self):
        citation = make_citation("Physical therapy requires prior authorization.")
        assert not citation_covers_value("Coverage is limited to 20 visits.", [citation])

    def test_any_citation_may_cover(self):
        citations = [make_citation("Unrelated text."), make_citation("You have 180 days to appeal")]
        assert citation_covers_value("Appeals must be filed within 180 days.", citations)

    def test_describe_missing_values(self):
        assert describe_missing_values("CPT 97110 for 12 sessions at $80.00") == (
            "source for $80.00, 12 sessions, CPT 97110"
        )

    def test_describe_falls_back_to_generic(self):
        assert describe_missing_values("Dated 2025-02-14.") == GENERIC_MARKER_TEXT


# ── Segmentation ───────────────────────────────────────────────────

class TestSplitSentences:

    def test_punctuation_and_capital(self):
        assert split_sentences("First one. Second one.\nThird") == [
            "First one.", "Second one.", "Third",
        ]

    def test_newline_before_capital(self):
        assert split_sentences("Total: $5\nNext line") == ["Total: $5", "Next line"]

    def test_marker_attached_to_its_sentence(self):
        content = "Owes $300. [NEEDS EVIDENCE: itemized bill] We disagree."
        assert split_sentences(content) == [
            "Owes $300. [NEEDS EVIDENCE: itemized bill]", "We disagree.",
        ]

    def test_marker_on_own_line_stands_alone(self):
        content = "Owes $300.\n[NEEDS EVIDENCE: itemized bill]"
        assert split_sentences(content) == ["Owes $300.", "[NEEDS EVIDENCE: itemized bill]"]

    def test_blank_content(self):
        assert split_sentences("   \n\n ") == []


# ── Verification ───────────────────────────────────────────────────

class TestVerifyPatching:

    def test_flags_uncited_numeric_claim(self, verifier):
        section = make_section("Patient owes $450.00 for this service.")
        outcome = verifier.verify([section])

        content = outcome.sections[0].content
        assert MARKER_PATTERN.search(content)
        assert content == (
            "Patient owes $450.00 for this service. [NEEDS EVIDENCE: source for $450.00]"
        )
        assert outcome.evidence_gaps == ["source for $450.00"]
        assert outcome.unresolved_claims == [
            'Rebuttal: numeric claim needs citation ("Patient owes $450.00 for this service.")'
        ]
        assert outcome.warnings == []

    def test_respects_covering_citation(self, verifier):
        section = make_section(
            "Patient owes $450.00 for this service.",
            citations=[make_citation("The total amount you may owe the provider is: $450.00")],
        )
        outcome = verifier.verify([section])
        assert outcome.sections[0].content == section.content
        assert outcome.evidence_gaps == []
        assert outcome.unresolved_claims == []

    def test_citation_without_value_still_patched(self, verifier):
        section = make_section(
            "Coverage is limited to 20 visits per year.",
            citations=[make_citation("Physical therapy requires prior authorization.")],
        )
        outcome = verifier.verify([section])
        assert outcome.sections[0].content.endswith("[NEEDS EVIDENCE: source for 20 visits]")

    def test_patches_each_uncovered_sentence_in_place(self, verifier):
        section = make_section(
            "Your letter dated 2025-02-14 denied coverage. We disagree. "
            "The plan allows 30 sessions."
        )
        outcome = verifier.verify([section])
        assert outcome.sections[0].content == (
            f"Your letter dated 2025-02-14 denied coverage. "
            f"[NEEDS EVIDENCE: {GENERIC_MARKER_TEXT}] We disagree. "
            "The plan allows 30 sessions. [NEEDS EVIDENCE: source for 30 sessions]"
        )
        assert outcome.evidence_gaps == [GENERIC_MARKER_TEXT, "source for 30 sessions"]
        assert len(outcome.unresolved_claims) == 2

    def test_repeated_sentence_patched_at_each_occurrence(self, verifier):
        section = make_section("Billed $90.00 today. Billed $90.00 today.")
        content = verifier.verify([section]).sections[0].content
        assert content == (
            "Billed $90.00 today. [NEEDS EVIDENCE: source for $90.00] "
            "Billed $90.00 today. [NEEDS EVIDENCE: source for $90.00]"
        )

    def test_existing_marker_not_reflagged(self, verifier):
        section = make_section("Patient owes $300. [NEEDS EVIDENCE: itemized bill]")
        outcome = verifier.verify([section])
        assert outcome.sections[0].content == section.content
        assert outcome.unresolved_claims == []
        assert outcome.evidence_gaps == ["itemized bill"]

    def test_long_sentence_preview_truncated(self):
        verifier = GroundingVerifier(sentence_preview_chars=20)
        outcome = verifier.verify([make_section("The member was billed $75.00 for an evaluation.")])
        assert outcome.unresolved_claims == [
            'Rebuttal: numeric claim needs citation ("The member was bille...")'
        ]

    def test_inputs_not_mutated(self, verifier):
        section = make_section("Patient owes $450.00.")
        verifier.verify([section])
        assert section.content == "Patient owes $450.00."
        assert section.warnings is None


class TestSectionRule:

    def test_uncited_section_without_marker_warns(self, verifier):
        section = make_section("We ask you to reconsider.", section_id="request", title="Request")
        outcome = verifier.verify([section])

        assert outcome.warnings == ['Section "Request" missing citations, verify supporting evidence']
        assert outcome.sections[0].warnings == [
            'Section "Request" has no citations and no NEEDS EVIDENCE placeholders.'
        ]
        assert outcome.sections[0].content == section.content

    def test_cited_section_passes(self, verifier):
        section = make_section("We ask you to reconsider.", citations=[make_citation("Claim CLM-1")])
        assert verifier.verify([section]).warnings == []

    def test_rule_is_per_section_not_per_paragraph(self, verifier):
        """One citation covers the section even when other paragraphs cite nothing."""
        section = make_section(
            "Claim CLM-1 was denied.\n\nThe treating provider supports this appeal.",
            citations=[make_citation("Claim CLM-1")],
        )
        outcome = verifier.verify([section])
        assert outcome.warnings == []
        assert outcome.sections[0].warnings is None

        marked = make_section(
            "[NEEDS EVIDENCE: physician letter]\n\nThe plan of care is attached."
        )
        assert verifier.verify([marked]).warnings == []

    def test_marker_satisfies_rule(self, verifier):
        section = make_section("[NEEDS EVIDENCE: physician letter]")
        assert verifier.verify([section]).warnings == []

    @pytest.mark.parametrize("section_id", ["header", "closing"])
    def test_exempt_sections(self, verifier, section_id):
        outcome = verifier.verify([make_section("Sincerely, Jane Doe", section_id=section_id)])
        assert outcome.warnings == []
        assert outcome.sections[0].warnings is None

    def test_exempt_sections_still_patched(self, verifier):
        outcome = verifier.verify([make_section("March 3, 2025", section_id="header")])
        assert outcome.sections[0].content == (
            f"March 3, 2025 [NEEDS EVIDENCE: {GENERIC_MARKER_TEXT}]"
        )

    def test_custom_exemptions(self):
        verifier = GroundingVerifier(exempt_section_ids=["request"])
        outcome = verifier.verify([make_section("Please reconsider.", section_id="request")])
        assert outcome.warnings == []

    def test_existing_section_warnings_kept(self, verifier):
        section = make_section("Plain text.", warnings=["Rebuttal lacks KB citations"])
        warnings = verifier.verify([section]).sections[0].warnings
        assert warnings[0] == "Rebuttal lacks KB citations"
        assert len(warnings) == 2

    def test_global_warnings_deduplicated(self, verifier):
        sections = [
            make_section("First note.", section_id="a", title="Notes"),
            make_section("Second note.", section_id="b", title="Notes"),
        ]
        assert len(verifier.verify(sections).warnings) == 1

    def test_problem_section_does_not_stop_others(self, verifier):
        sections = [
            make_section("No support here.", section_id="request", title="Request"),
            make_section("Patient owes $450.00."),
        ]
        outcome = verifier.verify(sections)
        assert len(outcome.warnings) == 1
        assert has_evidence_marker(outcome.sections[1].content)


class TestEvidenceGaps:

    def test_deduplicated_in_first_seen_order(self):
        sections = [
            make_section(
                "Progress is documented. [NEEDS EVIDENCE: functional improvement documentation]"
            ),
            make_section(
                "[NEEDS EVIDENCE: functional improvement documentation] "
                "[NEEDS EVIDENCE: session count record]"
            ),
        ]
        assert collect_evidence_gaps(sections) == [
            "functional improvement documentation",
            "session count record",
        ]

    def test_wrapper_stripped_and_trimmed(self):
        sections = [make_section("[needs evidence:   plan document  ]")]
        assert collect_evidence_gaps(sections) == ["plan document"]

    def test_marker_round_trip(self):
        marker = needs_evidence_marker("source for $80.00")
        assert collect_evidence_gaps([make_section(marker)]) == ["source for $80.00"]

    def test_no_markers(self):
        assert collect_evidence_gaps([make_section("Nothing missing.")]) == []


class TestIdempotence:
    """verify(verify(x).sections) adds no markers and no warnings."""

    SECTIONS = [
        ("header", "October 18, 2026\n\nJane Doe\n\nMember ID: W123456789", []),
        ("service_details", "The patient attended 24 sessions. Billed $1,250.00 in total.", []),
        ("request", "We ask you to reconsider this claim.", []),
        ("rebuttal", "Coverage is limited to 20 visits.\n\nBilled $90.00 today. Billed $90.00 today.",
         ["Physical therapy requires authorization."]),
        ("closing", "Appeals must be filed within 180 days.\n\nSincerely,\n\nJane Doe", []),
    ]

    @pytest.fixture
    def sections(self):
        return [
            make_section(content, section_id=sid, citations=[make_citation(s) for s in snippets])
            for sid, content, snippets in self.SECTIONS
        ]

    def test_second_pass_changes_nothing(self, verifier, sections):
        first = verifier.verify(sections)
        second = verifier.verify(first.sections)

        assert second.sections == first.sections
        assert second.evidence_gaps == first.evidence_gaps
        assert second.warnings == first.warnings
        assert second.unresolved_claims == []

    def test_marker_count_stable(self, verifier, sections):
        def marker_count(outcome):
            return sum(len(MARKER_PATTERN.findall(s.content)) for s in outcome.sections)

        first = verifier.verify(sections)
        second = verifier.verify(first.sections)
        assert marker_count(second) == marker_count(first) > 0
