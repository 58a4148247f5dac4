import json
import os
import tempfile

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase, override_settings

from core.errors import (
    ValidationFailed,
    INSUFFICIENT_EVIDENCE,
    INVALID_PAYLOAD,
    MISSING_EVIDENCE,
    MISSING_FIELD,
    SCORE_BELOW_MINIMUM,
    SIZE_EXCEEDED,
    TOO_MANY_FILES,
    TYPE_NOT_ALLOWED,
)
from catalog.eligibility import applicable_requirements, load_catalog
from catalog.loader import CatalogLoadError, load_catalog_data
from catalog.models import RequirementDefinition, TierPolicy
from catalog.rules import ValidationRules
from catalog.validators import coerce_iso_date, coerce_number, validate_submission

Kind = RequirementDefinition.Kind


def mk_req(code, kind=Kind.FORM, roles=("IT",), tiers=("basic",), **kwargs):
    return RequirementDefinition.objects.create(
        code=code,
        name=kwargs.pop("name", code.replace("-", " ").title()),
        kind=kind,
        applicable_roles=list(roles),
        applicable_tiers=list(tiers),
        **kwargs,
    )


class RulesTests(TestCase):
    def test_empty_rules_mean_no_constraints(self):
        rules = ValidationRules.from_dict(None)
        self.assertIsNone(rules.min_score)
        self.assertEqual(rules.file_types, ())
        self.assertEqual(rules.required_form_fields, ())

    def test_form_fields_accept_name_or_id(self):
        rules = ValidationRules.from_dict({
            "form_fields": [
                {"name": "full_name", "label": "Full name", "required": True},
                {"id": "dob", "type": "date", "required": True},
                {"name": "nickname"},
            ],
        })
        self.assertEqual([f.name for f in rules.required_form_fields], ["full_name", "dob"])

    def test_legacy_required_fields_are_merged(self):
        rules = ValidationRules.from_dict({
            "form_fields": [{"name": "a", "required": True}],
            "required_fields": ["a", "b"],
        })
        self.assertEqual([f.name for f in rules.required_form_fields], ["a", "b"])

    def test_file_types_are_normalized(self):
        rules = ValidationRules.from_dict({"file_types": [".PDF", "image/png"]})
        self.assertEqual(rules.file_types, ("pdf", "image/png"))

    def test_malformed_rules_raise(self):
        for bad in (
            {"min_score": "lots"},
            {"max_file_size": 0},
            {"max_files": True},
            {"file_types": "pdf"},
            {"form_fields": [{"label": "no name"}]},
            {"form_fields": [{"name": "x", "type": "colour"}]},
            ["not", "an", "object"],
        ):
            with self.subTest(rules=bad):
                with self.assertRaises(ValueError):
                    ValidationRules.from_dict(bad)


class EligibilityTests(TestCase):
    def setUp(self):
        self.it_basic = mk_req("it-basic", roles=["IT"], tiers=["basic"], display_order=2)
        self.all_tiers = mk_req("any-tier", roles=["IT", "IP"], tiers=[], display_order=1)
        self.robust = mk_req("robust-only", roles=["IT", "IP", "IC"], tiers=["robust"], display_order=3)
        self.nobody = mk_req("nobody", roles=[], tiers=["basic"], display_order=4)
        self.retired = mk_req("retired", roles=["IT"], tiers=["basic"], display_order=0, is_active=False)

    def codes(self, role, tier, excluded=frozenset()):
        catalog = RequirementDefinition.objects.catalog_order()
        return [r.code for r in applicable_requirements(catalog, role, tier, excluded)]

    def test_role_and_tier_must_both_match(self):
        self.assertEqual(self.codes("IT", "basic"), ["any-tier", "it-basic"])
        self.assertEqual(self.codes("IP", "basic"), ["any-tier"])
        self.assertEqual(self.codes("IP", "robust"), ["any-tier", "robust-only"])
        self.assertEqual(self.codes("IC", "robust"), ["robust-only"])
        self.assertEqual(self.codes("AP", "basic"), [])

    def test_empty_role_list_applies_to_nobody(self):
        for role in ("AP", "IC", "IP", "IT"):
            self.assertNotIn("nobody", self.codes(role, "basic"))

    def test_inactive_requirements_never_apply(self):
        self.assertNotIn("retired", self.codes("IT", "basic"))
        self.assertNotIn("retired", [r.code for r in load_catalog()])

    def test_overridden_requirements_are_excluded(self):
        self.assertEqual(self.codes("IT", "basic", {self.it_basic.pk}), ["any-tier"])


class ValidatorTests(TestCase):
    def test_form_missing_required_field(self):
        req = mk_req("bio", validation_rules={
            "form_fields": [
                {"name": "full_name", "label": "Full name", "required": True},
                {"name": "agree", "type": "checkbox", "required": True},
            ],
        })
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"fields": {"full_name": "  ", "agree": False}})
        self.assertEqual(ctx.exception.causes, {MISSING_FIELD})
        self.assertEqual([e.field for e in ctx.exception.errors], ["full_name", "agree"])
        self.assertIn("Full name is required.", ctx.exception.message)

    def test_form_coerces_dates_and_numbers(self):
        req = mk_req("cpr", validation_rules={
            "form_fields": [
                {"name": "expires", "type": "date", "required": True},
                {"name": "hours", "type": "number"},
            ],
        })
        out = validate_submission(req, {"expires": "2026-03-01", "hours": "12"})
        self.assertEqual(out, {"kind": "form", "fields": {"expires": "2026-03-01", "hours": 12}})

        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"expires": "soon", "hours": "many"})
        self.assertEqual(ctx.exception.causes, {INVALID_PAYLOAD})

    def test_file_upload_requires_a_file(self):
        req = mk_req("id-doc", kind=Kind.FILE_UPLOAD)
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"files": []})
        self.assertEqual(ctx.exception.cause, INSUFFICIENT_EVIDENCE)

    def test_file_upload_limits(self):
        req = mk_req("id-doc", kind=Kind.FILE_UPLOAD, validation_rules={
            "file_types": ["pdf", "image/png"], "max_file_size": 1000, "max_files": 2,
        })
        ok = {"reference": "s3://a", "name": "a.pdf", "size": 10, "type": "application/pdf"}
        big = dict(ok, reference="s3://b", size=1001)
        exe = dict(ok, reference="s3://c", type="application/x-msdownload")

        out = validate_submission(req, {"files": [ok], "notes": "front page"})
        self.assertEqual(out["files"][0]["reference"], "s3://a")
        self.assertEqual(out["notes"], "front page")

        for files, cause in (([big], SIZE_EXCEEDED), ([exe], TYPE_NOT_ALLOWED), ([ok, ok, ok], TOO_MANY_FILES)):
            with self.subTest(cause=cause):
                with self.assertRaises(ValidationFailed) as ctx:
                    validate_submission(req, {"files": files})
                self.assertIn(cause, ctx.exception.causes)

    def test_bad_files_are_dropped_and_good_ones_kept(self):
        req = mk_req("id-doc", kind=Kind.FILE_UPLOAD, validation_rules={"file_types": ["pdf"], "max_file_size": 1000})
        files = [
            {"reference": "r1", "name": "a.pdf", "size": 10, "type": "pdf"},
            {"reference": "r2", "name": "b.pdf", "size": 5000, "type": "pdf"},
            {"reference": "r3", "name": "c.exe", "size": 10, "type": "exe"},
        ]
        out = validate_submission(req, {"files": files})
        self.assertEqual([f["reference"] for f in out["files"]], ["r1"])
        self.assertEqual(
            [(r["field"], r["cause"]) for r in out["rejected_files"]],
            [("files[1]", SIZE_EXCEEDED), ("files[2]", TYPE_NOT_ALLOWED)],
        )

    def test_no_acceptable_file_is_insufficient_evidence(self):
        req = mk_req("id-doc", kind=Kind.FILE_UPLOAD, validation_rules={"file_types": ["pdf"], "max_file_size": 100})
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"files": [{"reference": "r1", "name": "setup.exe", "size": 10, "type": "exe"}]})
        self.assertEqual(ctx.exception.cause, INSUFFICIENT_EVIDENCE)
        self.assertEqual(ctx.exception.causes, {INSUFFICIENT_EVIDENCE, TYPE_NOT_ALLOWED})

        files = [
            {"reference": "r1", "name": "a.pdf", "size": 500},
            {"reference": "r2", "name": "b.docx", "size": 10},
        ]
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"files": files})
        self.assertEqual(
            [(e.field, e.cause) for e in ctx.exception.errors],
            [("files", INSUFFICIENT_EVIDENCE), ("files[0]", SIZE_EXCEEDED), ("files[1]", TYPE_NOT_ALLOWED)],
        )

    def test_mime_types_and_extensions_match_either_way(self):
        by_mime = mk_req("mime", kind=Kind.FILE_UPLOAD, validation_rules={"file_types": ["application/pdf"]})
        by_ext = mk_req("ext", kind=Kind.FILE_UPLOAD, validation_rules={"file_types": [".pdf"]})
        for req in (by_mime, by_ext):
            for declared in ("pdf", ".PDF", "application/pdf"):
                with self.subTest(rule=req.code, type=declared):
                    out = validate_submission(req, {"files": [{"reference": "r", "size": 1, "type": declared}]})
                    self.assertEqual(len(out["files"]), 1)

        # no declared type: the file name decides
        out = validate_submission(by_mime, {"files": [{"reference": "r", "name": "cert.PDF", "size": 1}]})
        self.assertEqual(out["rejected_files"], [])
        with self.assertRaises(ValidationFailed):
            validate_submission(by_mime, {"files": [{"reference": "r", "name": "cert", "size": 1}]})

    @override_settings(COMPLIANCE={"DEFAULT_MAX_FILE_SIZE": 10})
    def test_default_max_file_size_comes_from_settings(self):
        req = mk_req("id-doc", kind=Kind.FILE_UPLOAD)
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"files": [{"reference": "r", "size": 11}]})
        self.assertEqual(ctx.exception.causes, {INSUFFICIENT_EVIDENCE, SIZE_EXCEEDED})

    def test_malformed_file_entries_are_invalid_payload(self):
        req = mk_req("id-doc", kind=Kind.FILE_UPLOAD)
        for payload in ({"files": "a.pdf"}, {"files": [{"reference": "r", "size": -1}]}, {"files": [{"size": 3}]}):
            with self.subTest(payload=payload):
                with self.assertRaises(ValidationFailed) as ctx:
                    validate_submission(req, payload)
                self.assertEqual(ctx.exception.cause, INVALID_PAYLOAD)

    def test_external_link_minimum_score(self):
        req = mk_req("exam", kind=Kind.EXTERNAL_LINK, validation_rules={"min_score": 70})
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"score": 65})
        self.assertEqual(ctx.exception.cause, SCORE_BELOW_MINIMUM)
        self.assertIn("Minimum score of 70 required", ctx.exception.message)

        out = validate_submission(req, {"score": "75", "url": "https://lms.example/cert/1"})
        self.assertEqual(out["score"], 75)
        self.assertEqual(out["kind"], "external_link")

    def test_external_link_missing_score_fails_minimum(self):
        req = mk_req("exam", kind=Kind.EXTERNAL_LINK, validation_rules={"min_score": 70})
        with self.assertRaises(ValidationFailed):
            validate_submission(req, {"score": "n/a"})

    def test_external_link_completion_evidence(self):
        req = mk_req("course", kind=Kind.EXTERNAL_LINK, validation_rules={"completion_evidence_required": True})
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, {"url": "https://lms.example"})
        self.assertEqual(ctx.exception.cause, MISSING_EVIDENCE)

        out = validate_submission(req, {"certificate_id": "CERT-9", "completed_at": "2025-01-31"})
        self.assertEqual(out["completion_code"], "CERT-9")
        self.assertEqual(out["completed_at"], "2025-01-31")

    def test_payload_must_be_an_object(self):
        req = mk_req("bio")
        with self.assertRaises(ValidationFailed) as ctx:
            validate_submission(req, ["nope"])
        self.assertEqual(ctx.exception.cause, INVALID_PAYLOAD)

    def test_coercion_helpers(self):
        self.assertEqual(coerce_number("7.5"), 7.5)
        self.assertEqual(coerce_number(3.0), 3)
        self.assertIsNone(coerce_number(True))
        self.assertIsNone(coerce_number("NaN"))
        self.assertEqual(coerce_iso_date("2025-02-03"), "2025-02-03")
        self.assertIsNone(coerce_iso_date("2025-02-30"))
        self.assertIsNone(coerce_iso_date(12))


class PublishedRequirementTests(TestCase):
    def setUp(self):
        self.req = mk_req("cpr", points_value=10)
        self.req.publish()

    def test_published_rule_fields_are_immutable(self):
        self.req.points_value = 20
        with self.assertRaises(ValidationError):
            self.req.save()

    def test_wording_can_still_change(self):
        self.req.name = "CPR certificate"
        self.req.save()
        self.req.refresh_from_db()
        self.assertEqual(self.req.name, "CPR certificate")

    def test_requirements_are_deactivated_not_deleted(self):
        with self.assertRaises(ValidationError):
            self.req.delete()
        self.req.deactivate()
        self.req.refresh_from_db()
        self.assertFalse(self.req.is_active)


class TierPolicyTests(TestCase):
    def test_role_specific_policy_wins(self):
        TierPolicy.objects.create(tier="basic", next_tier="robust", min_completion_percentage=80)
        TierPolicy.objects.create(tier="basic", role="IP", next_tier="robust", min_completion_percentage=100)
        self.assertEqual(TierPolicy.for_identity("IP", "basic").min_completion_percentage, 100)
        self.assertEqual(TierPolicy.for_identity("IT", "basic").min_completion_percentage, 80)
        self.assertIsNone(TierPolicy.for_identity("IT", "robust"))


class LoaderTests(TestCase):
    data = {
        "requirements": [
            {
                "code": "cpr",
                "name": "CPR certificate",
                "kind": "file_upload",
                "requirement_type": "certification",
                "applicable_roles": ["IT", "IP"],
                "applicable_tiers": ["basic"],
                "points_value": 10,
                "validation_rules": {"file_types": ["pdf"]},
            },
        ],
        "policies": [
            {"tier": "basic", "next_tier": "robust", "min_completion_percentage": 80},
        ],
    }

    def test_load_creates_then_updates(self):
        counts = load_catalog_data(self.data, publish=True)
        self.assertEqual(counts, {"created": 1, "updated": 0, "policies": 1})
        self.assertTrue(RequirementDefinition.objects.get(code="cpr").is_published)

        again = load_catalog_data(self.data)
        self.assertEqual(again, {"created": 0, "updated": 1, "policies": 1})
        self.assertEqual(TierPolicy.objects.count(), 1)

    def test_invalid_entry_aborts_the_load(self):
        bad = {"requirements": self.data["requirements"] + [{"code": "x", "name": "X", "kind": "form",
                                                           "applicable_roles": ["ZZ"]}]}
        with self.assertRaises(CatalogLoadError):
            load_catalog_data(bad)
        self.assertFalse(RequirementDefinition.objects.exists())

    def test_published_rules_cannot_be_reloaded_with_changes(self):
        load_catalog_data(self.data, publish=True)
        changed = {"requirements": [dict(self.data["requirements"][0], points_value=99)]}
        with self.assertRaises(CatalogLoadError):
            load_catalog_data(changed)

    def test_management_command(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as fh:
            json.dump(self.data, fh)
        self.addCleanup(os.remove, fh.name)
        call_command("load_catalog", fh.name, "--publish")
        self.assertTrue(RequirementDefinition.objects.get(code="cpr").is_published)
