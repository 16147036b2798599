from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from formflow.core.exceptions import PersistenceException
from formflow.esign.documents import build_submission_pdf
from formflow.submissions.schemas import can_transition
from formflow.submissions.utils import decode_payload, encode_payload
from formflow.utils.sanitize import sanitize_key, sanitize_text, sanitize_value
from formflow.utils.storage import LocalFileStorage, S3FileStorage


def test_sanitize_helpers():
    assert sanitize_key("Nome Completo!") == "nomecompleto"
    assert sanitize_text("<p>Ola\n\tmundo</p>") == "Ola mundo"
    assert sanitize_text(None) == ""
    assert sanitize_value(" maria@empresa.com.br ") == "maria@empresa.com.br"
    assert sanitize_value(" https://empresa.com.br/contato ") == "https://empresa.com.br/contato"
    assert sanitize_value(["<b>x</b>", 2]) == ["x", "2"]
    assert sanitize_value(42) == "42"
    assert sanitize_value({"City": " <b>Sao Paulo</b>", "zip": 1000}) == {"city": "Sao Paulo", "zip": "1000"}
    assert sanitize_value(True) == "True"


def test_payload_encoding_is_compressed_json():
    data = {"nome": "Joao", "itens": [1, 2, 3], "obs": "a" * 500}

    payload, compressed = encode_payload(data)

    assert compressed is True
    assert len(payload) < 500
    assert decode_payload(payload, compressed) == data
    assert decode_payload(b'{"a": 1}', False) == {"a": 1}
    assert decode_payload(b"", True) == {}


def test_status_graph_is_forward_only():
    assert can_transition("pending", "pending_signature") is True
    assert can_transition("pending_signature", "completed") is True
    assert can_transition("completed", "pending") is False
    assert can_transition("failed", "completed") is False
    assert can_transition("signature_refused", "fully_signed") is False
    assert can_transition("unknown", "completed") is False


def test_local_storage_writes_under_base_dir(tmp_path):
    storage = LocalFileStorage(str(tmp_path), "http://files.test/")

    stored = storage.save("signed/doc-1.pdf", b"%PDF")

    assert stored.url == "http://files.test/signed/doc-1.pdf"
    with open(stored.path, "rb") as f:
        assert f.read() == b"%PDF"
    with pytest.raises(PersistenceException):
        storage.save("../outside.pdf", b"x")


def test_s3_storage_uploads_and_presigns():
    s3_client = MagicMock()
    s3_client.generate_presigned_url.return_value = "https://bucket.s3/signed/doc-1.pdf?sig"
    storage = S3FileStorage(s3_client=s3_client, bucket_name="formflow-docs")

    stored = storage.save("signed/doc-1.pdf", b"%PDF")

    assert stored.path == "signed/doc-1.pdf"
    assert stored.url == "https://bucket.s3/signed/doc-1.pdf?sig"
    args, kwargs = s3_client.upload_fileobj.call_args
    assert args[1:] == ("formflow-docs", "signed/doc-1.pdf")
    assert kwargs["ExtraArgs"] == {"ContentType": "application/pdf"}


def test_s3_storage_wraps_client_errors():
    s3_client = MagicMock()
    s3_client.upload_fileobj.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

    with pytest.raises(PersistenceException):
        S3FileStorage(s3_client=s3_client, bucket_name="formflow-docs").save("a.pdf", b"x")


def test_submission_pdf_is_a_pdf():
    content = build_submission_pdf("Contrato", {"nome": "Maria", "itens": ["a", "b"]}, subtitle="Submission 1")

    assert content.startswith(b"%PDF")
