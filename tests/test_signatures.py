import pytest

import lifecycle
import loan_lines
import signatures
from conftest import JPEG_BYTES, PNG_BYTES
from errors import LoanNotOpen, NotFound, ValidationError
from models import AssetTarget
from signature_store import MAX_SIGNATURE_BYTES, FileSignatureStore


def _file(signatures_dir, url):
    return signatures_dir / url.rsplit("/", 1)[-1]


def test_record_pickup_and_return(db_session, make_loan, signatures_dir):
    loan = make_loan()

    signed = signatures.record_pickup_signature(db_session, loan.id, PNG_BYTES, "image/png")
    assert signed.pickup_signature_url.startswith("/uploads/signatures/")
    assert signed.pickup_signed_at is not None
    assert signed.return_signature_url is None
    assert _file(signatures_dir, signed.pickup_signature_url).read_bytes() == PNG_BYTES

    signed = signatures.record_return_signature(db_session, loan.id, JPEG_BYTES, "image/jpeg")
    assert signed.return_signature_url.endswith(".jpg")
    assert signed.return_signed_at is not None


def test_replacing_a_signature_deletes_the_old_file(db_session, make_loan, signatures_dir):
    loan = make_loan()
    first = signatures.record_pickup_signature(db_session, loan.id, PNG_BYTES, "image/png")
    second = signatures.record_pickup_signature(db_session, loan.id, PNG_BYTES, "image/png")

    assert first.pickup_signature_url != second.pickup_signature_url
    assert not _file(signatures_dir, first.pickup_signature_url).exists()
    assert _file(signatures_dir, second.pickup_signature_url).exists()


def test_remove_signature(db_session, make_loan, signatures_dir):
    loan = make_loan()
    signed = signatures.record_return_signature(db_session, loan.id, PNG_BYTES, "image/png")

    cleared = signatures.remove_return_signature(db_session, loan.id)
    assert cleared.return_signature_url is None
    assert cleared.return_signed_at is None
    assert not _file(signatures_dir, signed.return_signature_url).exists()

    with pytest.raises(NotFound):
        signatures.remove_return_signature(db_session, loan.id)


def test_signatures_on_missing_or_closed_loans(db_session, make_loan, make_asset_item, signatures_dir):
    with pytest.raises(NotFound):
        signatures.record_pickup_signature(db_session, "missing", PNG_BYTES, "image/png")

    loan = make_loan()
    item = make_asset_item()
    loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id))
    signatures.record_pickup_signature(db_session, loan.id, PNG_BYTES, "image/png")
    signatures.record_return_signature(db_session, loan.id, PNG_BYTES, "image/png")
    lifecycle.close_loan(db_session, loan.id)
    files_before = sorted(signatures_dir.iterdir())

    with pytest.raises(LoanNotOpen):
        signatures.record_return_signature(db_session, loan.id, PNG_BYTES, "image/png")
    with pytest.raises(LoanNotOpen):
        signatures.remove_pickup_signature(db_session, loan.id)
    assert sorted(signatures_dir.iterdir()) == files_before


@pytest.mark.parametrize(
    "data, content_type",
    [
        (b"", "image/png"),
        (b"GIF89a" + b"\x00" * 16, "image/gif"),
        (b"not an image", None),
        (PNG_BYTES, "image/jpeg"),
        (PNG_BYTES + b"\x00" * MAX_SIGNATURE_BYTES, "image/png"),
    ],
)
def test_store_rejects_bad_images(tmp_path, data, content_type):
    store = FileSignatureStore(tmp_path)
    with pytest.raises(ValidationError):
        store.save(data, content_type)
    assert list(tmp_path.iterdir()) == []


def test_store_delete_ignores_directories_in_url(tmp_path):
    store = FileSignatureStore(tmp_path / "sigs")
    url = store.save(PNG_BYTES, "image/png")
    outside = tmp_path / "keep.png"
    outside.write_bytes(PNG_BYTES)

    assert store.path_for("/uploads/signatures/../../keep.png") == tmp_path / "sigs" / "keep.png"
    store.delete(url)
    assert outside.exists()
    assert list((tmp_path / "sigs").iterdir()) == []
