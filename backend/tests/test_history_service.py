import unittest
import uuid
from datetime import date, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kostnadskoll.models.invoice import Base, InvoiceHistory
from kostnadskoll.schemas.invoice import (
    AnalysisMode,
    BillingType,
    Category,
    ExtractedInvoice,
    InvoiceFile,
    InvoiceStatus,
    SourceType,
)
from kostnadskoll.services import history_service
from kostnadskoll.services.errors import NotFoundError, OwnershipError, ValidationError
from kostnadskoll.services.history_service import (
    MAX_PREVIEW_DATA_URL_LENGTH,
    PREVIEW_TOO_LARGE,
    PREVIEW_UNSUPPORTED,
    build_file_preview,
    clamp_limit,
    infer_billing_type,
    infer_status,
)


def _invoice(**overrides) -> ExtractedInvoice:
    data = {
        "vendor_name": "Telia",
        "category": Category.MOBILE,
        "monthly_cost": 299,
        "total_amount": 299,
        "due_date": date(2024, 3, 15),
        "invoice_number": "12345",
        "confidence": 0.85,
    }
    data.update(overrides)
    return ExtractedInvoice(**data)


class DerivedFieldTests(unittest.TestCase):
    def test_status_from_due_date(self):
        today = date(2024, 3, 10)
        self.assertEqual(infer_status(None, today=today), InvoiceStatus.UNKNOWN)
        self.assertEqual(infer_status(date(2024, 3, 9), today=today), InvoiceStatus.OVERDUE)
        self.assertEqual(infer_status(date(2024, 3, 10), today=today), InvoiceStatus.DUE_SOON)
        self.assertEqual(infer_status(date(2024, 3, 17), today=today), InvoiceStatus.DUE_SOON)
        self.assertEqual(infer_status(date(2024, 3, 18), today=today), InvoiceStatus.ACTIVE)

    def test_billing_type_inference(self):
        self.assertEqual(infer_billing_type(category="Tjänst", monthly_cost=500), BillingType.ONE_TIME)
        self.assertEqual(infer_billing_type(category="Mobil", monthly_cost=299), BillingType.SUBSCRIPTION)
        self.assertEqual(infer_billing_type(category="Övrigt", total_amount=1200), BillingType.ONE_TIME)
        self.assertEqual(infer_billing_type(category="Övrigt"), BillingType.UNCLEAR)

    def test_explicit_billing_type_wins(self):
        self.assertEqual(infer_billing_type("subscription", category="Tjänst"), BillingType.SUBSCRIPTION)
        self.assertEqual(infer_billing_type("one-time", monthly_cost=99), BillingType.ONE_TIME)
        self.assertEqual(infer_billing_type("nonsense", monthly_cost=99), BillingType.SUBSCRIPTION)

    def test_clamp_limit(self):
        self.assertEqual(clamp_limit(None, default=40), 40)
        self.assertEqual(clamp_limit(0), 1)
        self.assertEqual(clamp_limit(999), 200)
        self.assertEqual(clamp_limit("15"), 15)
        self.assertEqual(clamp_limit("many", default=40), 40)


class FilePreviewTests(unittest.TestCase):
    def test_image_preview_keeps_data_url(self):
        file = InvoiceFile(name="faktura.jpg", type="image/jpeg", data_url="data:image/jpeg;base64,AAAA")
        preview = build_file_preview(source_type=SourceType.FILE, file=file)
        self.assertEqual(preview.preview_kind, "image")
        self.assertEqual(preview.preview_src, file.data_url)

    def test_oversized_file_is_unavailable(self):
        data_url = "data:application/pdf;base64," + "A" * MAX_PREVIEW_DATA_URL_LENGTH
        file = InvoiceFile(name="big.pdf", type="application/pdf", data_url=data_url)
        preview = build_file_preview(source_type=SourceType.FILE, file=file)
        self.assertEqual(preview.preview_kind, "unavailable")
        self.assertEqual(preview.unavailable_reason, PREVIEW_TOO_LARGE)
        self.assertEqual(preview.preview_src, "")

    def test_unsupported_file_type(self):
        file = InvoiceFile(name="faktura.docx", type="application/msword", data_url="data:;base64,AA")
        preview = build_file_preview(source_type=SourceType.FILE, file=file)
        self.assertEqual(preview.unavailable_reason, PREVIEW_UNSUPPORTED)

    def test_text_preview_is_truncated(self):
        preview = build_file_preview(source_type=SourceType.TEXT, source_text="x" * 20_000)
        self.assertEqual(preview.preview_kind, "text")
        self.assertEqual(len(preview.text_preview), 12_000)
        self.assertIsNone(build_file_preview(source_type=SourceType.TEXT, source_text="   "))


class HistoryStoreTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.db = self.SessionLocal()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _save(self, owner="alice", **overrides):
        return history_service.save_entry(
            self.db,
            owner,
            _invoice(**overrides),
            analysis_mode=AnalysisMode.RULES,
            source_type=SourceType.TEXT,
            source_text="Telia\nAtt betala: 299 kr",
        )

    def test_save_and_list(self):
        row = self._save()
        items = history_service.list_by_owner(self.db, "alice", today=date(2024, 3, 10))

        self.assertEqual(len(items), 1)
        entry = items[0]
        self.assertEqual(entry.id, str(row.id))
        self.assertEqual(entry.vendor_name, "Telia")
        self.assertEqual(entry.category, Category.MOBILE)
        self.assertEqual(entry.monthly_cost, 299)
        self.assertEqual(entry.billing_type, BillingType.SUBSCRIPTION)
        self.assertEqual(entry.status, InvoiceStatus.DUE_SOON)
        self.assertEqual(entry.file_preview.preview_kind, "text")
        self.assertIsNotNone(entry.scanned_at)

    def test_save_requires_owner(self):
        with self.assertRaises(ValidationError):
            history_service.save_entry(self.db, "", _invoice())

    def test_list_is_scoped_and_limited(self):
        for _ in range(3):
            self._save()
        self._save(owner="bob")
        self.assertEqual(len(history_service.list_by_owner(self.db, "alice")), 3)
        self.assertEqual(len(history_service.list_by_owner(self.db, "alice", limit=2)), 2)
        self.assertEqual(len(history_service.list_by_owner(self.db, "bob")), 1)
        self.assertEqual(history_service.list_by_owner(self.db, "carol"), [])

    def test_list_is_newest_first(self):
        old = self._save(vendor_name="Old")
        new = self._save(vendor_name="New")
        old.created_at = datetime(2024, 1, 1)
        new.created_at = datetime(2024, 2, 1)
        self.db.commit()
        names = [e.vendor_name for e in history_service.list_by_owner(self.db, "alice")]
        self.assertEqual(names, ["New", "Old"])

    def test_update_rederives_status_and_billing_type(self):
        row = self._save()
        updated = history_service.update_entry(
            self.db,
            "alice",
            str(row.id),
            _invoice(category=Category.SERVICE, monthly_cost=None, total_amount=4500, due_date=date.today() + timedelta(days=30)),
        )
        self.assertEqual(updated.category, Category.SERVICE)
        self.assertEqual(updated.total_amount, 4500)
        self.assertEqual(updated.billing_type, BillingType.ONE_TIME)
        self.assertEqual(updated.status, InvoiceStatus.ACTIVE)

    def test_update_with_explicit_billing_type(self):
        row = self._save()
        updated = history_service.update_entry(
            self.db, "alice", row.id, _invoice(monthly_cost=None), billing_type="Engång"
        )
        self.assertEqual(updated.billing_type, BillingType.ONE_TIME)

    def test_foreign_entry_looks_missing_and_is_untouched(self):
        row = self._save(owner="alice")
        missing_id = str(uuid.uuid4())

        with self.assertRaises(NotFoundError) as missing:
            history_service.update_entry(self.db, "bob", missing_id, _invoice())
        with self.assertRaises(OwnershipError) as foreign:
            history_service.update_entry(self.db, "bob", str(row.id), _invoice(vendor_name="Hijacked"))
        self.assertEqual(str(missing.exception), str(foreign.exception))

        with self.assertRaises(NotFoundError):
            history_service.delete_entry(self.db, "bob", str(row.id))

        self.db.expire_all()
        stored = self.db.get(InvoiceHistory, row.id)
        self.assertEqual(stored.vendor_name, "Telia")

    def test_get_entry_validation(self):
        with self.assertRaises(ValidationError):
            history_service.get_entry(self.db, "alice", "  ")
        with self.assertRaises(ValidationError) as invalid:
            history_service.get_entry(self.db, "alice", "not-a-uuid")
        self.assertEqual(str(invalid.exception), history_service.INVALID_ID)
        with self.assertRaises(ValidationError):
            history_service.delete_entry(self.db, "alice", "not-a-uuid")
        with self.assertRaises(NotFoundError):
            history_service.get_entry(self.db, "alice", str(uuid.uuid4()))

    def test_delete_entry(self):
        row = self._save()
        self.assertEqual(history_service.delete_entry(self.db, "alice", str(row.id)), 1)
        self.assertEqual(history_service.list_by_owner(self.db, "alice"), [])

    def test_delete_many_skips_foreign_and_invalid_ids(self):
        mine = [self._save() for _ in range(3)]
        theirs = self._save(owner="bob")
        ids = [str(r.id) for r in mine[:2]] + [str(mine[0].id), str(theirs.id), "garbage", ""]

        deleted = history_service.delete_many(self.db, "alice", ids)

        self.assertEqual(deleted, 2)
        self.assertEqual(len(history_service.list_by_owner(self.db, "alice")), 1)
        self.assertEqual(len(history_service.list_by_owner(self.db, "bob")), 1)

    def test_delete_many_requires_ids(self):
        with self.assertRaises(ValidationError):
            history_service.delete_many(self.db, "alice", ["", "  ", None])

    def test_delete_many_in_chunks(self):
        rows = [self._save() for _ in range(5)]
        original = history_service.DELETE_CHUNK_SIZE
        history_service.DELETE_CHUNK_SIZE = 2
        try:
            deleted = history_service.delete_many(self.db, "alice", [r.id for r in rows])
        finally:
            history_service.DELETE_CHUNK_SIZE = original
        self.assertEqual(deleted, 5)

    def test_delete_all_by_owner(self):
        self._save()
        self._save()
        self._save(owner="bob")
        self.assertEqual(history_service.delete_all_by_owner(self.db, "alice"), 2)
        self.assertEqual(history_service.list_by_owner(self.db, "alice"), [])
        self.assertEqual(len(history_service.list_by_owner(self.db, "bob")), 1)
