"""Rule-based extraction and the AI/rules normalizer."""

import unittest
from datetime import date

from kostnadskoll.schemas.invoice import (
    DEFAULT_VENDOR,
    FIELD_KEYS,
    NO_SOURCE_SENTINEL,
    Category,
    PaymentMethod,
)
from kostnadskoll.services.extraction.normalizer import (
    normalize_extracted,
    resolve_category,
    resolve_monthly_cost,
)
from kostnadskoll.services.extraction.rules import extract_with_rules
from kostnadskoll.services.extraction.vocabulary import (
    guess_category,
    guess_payment_method,
    has_monthly_signal,
    normalize_billing_type,
    normalize_category,
)

TELIA_TEXT = "Telia\nFakturanummer: 12345\nAtt betala: 299 kr\nFörfallodatum: 2024-03-15"


class RulesExtractorTests(unittest.TestCase):
    def test_telia_invoice(self):
        invoice = extract_with_rules(TELIA_TEXT)
        self.assertEqual(invoice.vendor_name, "Telia")
        self.assertEqual(invoice.category, Category.MOBILE)
        self.assertEqual(invoice.total_amount, 299)
        self.assertEqual(invoice.due_date, date(2024, 3, 15))
        self.assertEqual(invoice.invoice_number, "12345")
        self.assertEqual(invoice.customer_number, "")
        self.assertEqual(invoice.ocr_reference, "")
        self.assertIsNone(invoice.monthly_cost)
        self.assertIsNone(invoice.invoice_date)
        self.assertGreater(invoice.confidence, 0.5)

    def test_empty_text_gives_defaults(self):
        invoice = extract_with_rules("")
        self.assertEqual(invoice.vendor_name, DEFAULT_VENDOR)
        self.assertEqual(invoice.category, Category.OTHER)
        self.assertEqual(invoice.payment_method, PaymentMethod.UNKNOWN)
        self.assertEqual(invoice.confidence, 0.25)

    def test_none_text_is_treated_as_empty(self):
        self.assertEqual(extract_with_rules(None).vendor_name, DEFAULT_VENDOR)

    def test_labelled_fields(self):
        text = (
            "Bahnhof AB\n"
            "Kundnummer: K-99812\n"
            "Fakturadatum: 2024-02-01\n"
            "OCR: 1234 5678 90\n"
            "Org.nr: 556123-4567\n"
            "Månadskostnad: 399 kr\n"
            "Moms 25% 79,80 kr\n"
            "Att betala: 399,00 kr\n"
            "Betalas via autogiro\n"
        )
        invoice = extract_with_rules(text)
        self.assertEqual(invoice.customer_number, "K-99812")
        self.assertEqual(invoice.invoice_date, date(2024, 2, 1))
        self.assertEqual(invoice.ocr_reference, "1234 5678 90")
        self.assertEqual(invoice.organization_number, "556123-4567")
        self.assertEqual(invoice.monthly_cost, 399)
        self.assertEqual(invoice.total_amount, 399)
        self.assertEqual(invoice.vat_amount, 79.8)
        self.assertEqual(invoice.payment_method, PaymentMethod.AUTOGIRO)

    def test_service_keywords_win_over_vendor_keywords(self):
        self.assertEqual(guess_category("Telia installation av router"), Category.SERVICE)
        self.assertEqual(guess_category("Rörmokare Nilsson"), Category.SERVICE)

    def test_bare_abonnemang_is_weak_mobile_signal(self):
        self.assertEqual(guess_category("Ditt abonnemang"), Category.MOBILE)
        self.assertEqual(guess_category("Bredband abonnemang"), Category.INTERNET)

    def test_payment_method_keywords(self):
        self.assertEqual(guess_payment_method("Betala med e-faktura"), PaymentMethod.E_INVOICE)
        self.assertEqual(guess_payment_method("Bankgiro 123-4567"), PaymentMethod.BANKGIRO)
        self.assertEqual(guess_payment_method("Betalning med kortet"), PaymentMethod.CARD)
        self.assertEqual(guess_payment_method("Ingen info"), PaymentMethod.UNKNOWN)


class VocabularyTests(unittest.TestCase):
    def test_category_synonyms(self):
        self.assertEqual(normalize_category("electricity"), Category.ELECTRICITY)
        self.assertEqual(normalize_category("Försäkring"), Category.INSURANCE)
        self.assertEqual(normalize_category("tjänster"), Category.SERVICE)
        self.assertEqual(normalize_category("whatever"), Category.OTHER)

    def test_billing_type_synonyms(self):
        self.assertEqual(str(normalize_billing_type("recurring")), "Abonnemang")
        self.assertEqual(str(normalize_billing_type("Engång")), "Engång")
        self.assertIsNone(normalize_billing_type("maybe"))

    def test_monthly_slash_forms(self):
        self.assertTrue(has_monthly_signal("299 kr/mån"))
        self.assertTrue(has_monthly_signal("299 kr / månad"))
        self.assertTrue(has_monthly_signal("9 EUR/month"))
        self.assertFalse(has_monthly_signal("Se https://example.se/manual/faktura"))


class NormalizerTests(unittest.TestCase):
    def test_rules_only_when_no_ai_payload(self):
        result = normalize_extracted(None, TELIA_TEXT)
        self.assertEqual(result.extracted.vendor_name, "Telia")
        self.assertEqual(result.extracted.category, Category.MOBILE)
        self.assertEqual(list(result.field_meta), list(FIELD_KEYS))

    def test_normalization_is_idempotent(self):
        raw = {"extracted": {"vendorName": "Telia", "totalAmount": "299"}, "fieldMeta": {}}
        first = normalize_extracted(raw, TELIA_TEXT)
        second = normalize_extracted(raw, TELIA_TEXT)
        self.assertEqual(first.extracted, second.extracted)
        self.assertEqual(first.field_meta, second.field_meta)

    def test_garbage_input_is_total(self):
        for raw in ("not json", 12, [], {"extracted": "nope"}, {"extracted": {"totalAmount": {"x": 1}}}):
            result = normalize_extracted(raw, "")
            self.assertEqual(result.extracted.vendor_name, DEFAULT_VENDOR)
            self.assertTrue(0.0 <= result.extracted.confidence <= 1.0)

    def test_ai_values_win_over_rules(self):
        raw = {
            "extracted": {
                "vendor_name": "Telia Sverige AB",
                "category": "mobile",
                "total_amount": 349,
                "due_date": "2024-04-30",
                "payment_method": "Autogiro",
                "confidence": 0.92,
            },
            "field_meta": {"total_amount": {"confidence": 0.97, "source_text": "Att betala: 349 kr"}},
        }
        result = normalize_extracted(raw, TELIA_TEXT)
        self.assertEqual(result.extracted.vendor_name, "Telia Sverige AB")
        self.assertEqual(result.extracted.total_amount, 349)
        self.assertEqual(result.extracted.due_date, date(2024, 4, 30))
        self.assertEqual(result.extracted.payment_method, PaymentMethod.AUTOGIRO)
        self.assertEqual(result.extracted.confidence, 0.92)
        self.assertEqual(result.field_meta["total_amount"].confidence, 0.97)
        self.assertEqual(result.field_meta["total_amount"].source_text, "Att betala: 349 kr")

    def test_ai_gaps_are_filled_from_rules(self):
        raw = {"extracted": {"vendor_name": "", "due_date": "soon", "payment_method": "Okänt"}}
        result = normalize_extracted(raw, TELIA_TEXT + "\nBetalas med autogiro")
        self.assertEqual(result.extracted.vendor_name, "Telia")
        self.assertEqual(result.extracted.due_date, date(2024, 3, 15))
        self.assertEqual(result.extracted.payment_method, PaymentMethod.AUTOGIRO)

    def test_confidence_is_clamped(self):
        result = normalize_extracted({"extracted": {"confidence": 7}}, "")
        self.assertEqual(result.extracted.confidence, 1.0)
        result = normalize_extracted({"extracted": {"confidence": -3}}, "")
        self.assertEqual(result.extracted.confidence, 0.0)
        for meta in result.field_meta.values():
            self.assertTrue(0.0 <= meta.confidence <= 1.0)

    def test_missing_source_uses_sentinel(self):
        result = normalize_extracted(None, TELIA_TEXT)
        self.assertEqual(result.field_meta["customer_number"].source_text, NO_SOURCE_SENTINEL)
        self.assertEqual(result.field_meta["customer_number"].confidence, 0.25)
        self.assertEqual(result.field_meta["due_date"].source_text, "Förfallodatum: 2024-03-15")


class MonthlyCostDisambiguationTests(unittest.TestCase):
    def test_monthly_equal_to_total_without_monthly_wording_is_dropped(self):
        self.assertIsNone(resolve_monthly_cost(500, 500, monthly_snippet=None, full_text="Att betala 500 kr"))

    def test_monthly_equal_to_total_with_monthly_wording_is_kept(self):
        self.assertEqual(
            resolve_monthly_cost(250, 250, monthly_snippet=None, full_text="Abonnemang 250 kr/mån"),
            250,
        )
        self.assertEqual(
            resolve_monthly_cost(250, 250, monthly_snippet="250 kr per månad", full_text=""),
            250,
        )

    def test_different_amounts_are_kept(self):
        self.assertEqual(resolve_monthly_cost(199, 398, monthly_snippet=None, full_text=""), 199)

    def test_normalizer_applies_disambiguation(self):
        raw = {"extracted": {"monthly_cost": 500, "total_amount": 500}}
        result = normalize_extracted(raw, "Elfirman\nAtt betala: 500 kr")
        self.assertIsNone(result.extracted.monthly_cost)


class CategoryResolutionTests(unittest.TestCase):
    def test_service_signal_overrides_ai_category(self):
        text = "Golvvärme installation\nArbete (timmar) 8"
        self.assertEqual(resolve_category("El", Category.SERVICE, text), Category.SERVICE)

    def test_ai_category_preferred_otherwise(self):
        self.assertEqual(resolve_category("Internet", Category.MOBILE, "Telia"), Category.INTERNET)

    def test_unknown_ai_category_falls_back_to_rules(self):
        self.assertEqual(resolve_category("Övrigt", Category.STREAMING, "Spotify"), Category.STREAMING)
        self.assertEqual(resolve_category(None, Category.OTHER, ""), Category.OTHER)
