import base64
import os
from unittest.mock import MagicMock

import pytest

from formflow.audit_trail.services import activity_service
from formflow.core.exceptions import ExternalServiceException
from formflow.esign.services import META_DOCUMENT_ID, META_SIGNED_PATH, META_SIGNED_URL, META_STATUS, SignatureOrchestrator
from formflow.queue.repository import QueueRepository
from formflow.queue.schemas import JobType
from formflow.submissions.repository import SubmissionRepository
from formflow.submissions.schemas import SubmissionStatus
from formflow.submissions.services import SubmissionIngestor
from formflow.testing_dependencies import (
    SIGNED_PDF,
    autentique_client,
    cache_manager,
    cache_session_factory,
    clock,
    db_session,
    local_storage,
    make_form,
    redis_client,
)

TWO_SIGNERS = {
    "autentique_enabled": True,
    "autentique_signers": [
        {"email_field": "email", "name_field": "name", "phone_field": "phone"},
        {"email_field": "witness_email", "name_field": "witness_name", "action": "approve"},
    ],
}

DATA = {
    "name": "Maria Silva",
    "email": "maria@empresa.com.br",
    "phone": "+55 11 99999-0000",
    "witness_name": "Joao Souza",
    "witness_email": "joao@empresa.com.br",
}


@pytest.fixture
def orchestrator(db_session, cache_manager, autentique_client, local_storage):
    return SignatureOrchestrator(
        db=db_session,
        cache=cache_manager,
        client=autentique_client,
        storage=local_storage,
    )


def _submit(db, cache, settings=TWO_SIGNERS, data=DATA):
    form = make_form(db, settings=settings)
    result = SubmissionIngestor(db, cache).process_submission(form.id, data)
    assert result.success is True
    return result.submission_id


def _status(db, submission_id):
    return SubmissionRepository(db).get_submission(submission_id).status


def _jobs(db, submission_id, job_type):
    return [job for job in QueueRepository(db).list_for_submission(submission_id) if job.job_type == job_type.value]


@pytest.fixture
def pending_signature(db_session, cache_manager, orchestrator):
    submission_id = _submit(db_session, cache_manager)
    result = orchestrator.create_document_from_submission(submission_id)
    assert result.success is True
    return submission_id, result.document_id


def test_create_document_moves_submission_to_pending_signature(
    db_session, cache_manager, orchestrator, autentique_client
):
    submission_id = _submit(db_session, cache_manager)

    result = orchestrator.create_document_from_submission(submission_id)

    assert result.success is True
    assert result.status == SubmissionStatus.PENDING_SIGNATURE.value
    assert result.document_id == "doc-1"
    assert _status(db_session, submission_id) == SubmissionStatus.PENDING_SIGNATURE.value

    repo = SubmissionRepository(db_session)
    assert repo.get_meta_value(submission_id, META_DOCUMENT_ID) == "doc-1"
    assert repo.find_submission_id_by_meta(META_DOCUMENT_ID, "doc-1") == submission_id

    sent = autentique_client.created[0]
    assert sent["name"].startswith(f"Contrato de Adesao - {submission_id} - ")
    assert base64.b64decode(sent["file"]).startswith(b"%PDF")
    assert sent["signers"] == [
        {"email": "maria@empresa.com.br", "name": "Maria Silva", "action": "sign", "phone": "+55 11 99999-0000"},
        {"email": "joao@empresa.com.br", "name": "Joao Souza", "action": "approve"},
    ]

    status_checks = _jobs(db_session, submission_id, JobType.AUTENTIQUE_STATUS_CHECK)
    assert [job.payload for job in status_checks] == [{"document_id": "doc-1"}]


def test_create_document_uses_template_renderer(db_session, cache_manager, autentique_client, local_storage):
    renderer = MagicMock()
    renderer.render.return_value = b"%PDF-1.7 template"
    orchestrator = SignatureOrchestrator(
        db=db_session, cache=cache_manager, client=autentique_client, storage=local_storage, renderer=renderer
    )
    submission_id = _submit(db_session, cache_manager, settings={**TWO_SIGNERS, "autentique_pdf_template": "tpl-9"})

    assert orchestrator.create_document_from_submission(submission_id).success is True
    renderer.render.assert_called_once_with("tpl-9", DATA)
    assert base64.b64decode(autentique_client.created[0]["file"]) == b"%PDF-1.7 template"


def test_create_document_without_signers_fails(db_session, cache_manager, orchestrator, autentique_client):
    submission_id = _submit(db_session, cache_manager, data={"name": "Maria"})

    result = orchestrator.create_document_from_submission(submission_id)

    assert result.success is False
    assert result.error == "No signers configured"
    assert autentique_client.created == []
    assert _status(db_session, submission_id) == SubmissionStatus.PENDING.value


def test_create_document_requires_signature_setting(db_session, cache_manager, orchestrator):
    submission_id = _submit(db_session, cache_manager, settings={"autentique_signers": TWO_SIGNERS["autentique_signers"]})

    result = orchestrator.create_document_from_submission(submission_id)

    assert result.success is False
    assert result.error == "Autentique is not enabled for this form"


def test_create_document_reports_provider_error(db_session, cache_manager, orchestrator, autentique_client):
    submission_id = _submit(db_session, cache_manager)
    autentique_client.error = ExternalServiceException("Autentique API Error (503): unavailable", 503)

    result = orchestrator.create_document_from_submission(submission_id)

    assert result.success is False
    assert result.error == "Autentique API Error (503): unavailable"
    assert _status(db_session, submission_id) == SubmissionStatus.PENDING.value
    assert SubmissionRepository(db_session).get_meta_value(submission_id, META_DOCUMENT_ID) is None
    activity = activity_service.get_activity_by_submission(db_session, submission_id)
    assert activity[-1].message == "Failed to create Autentique document"


def test_create_document_for_unknown_submission(orchestrator):
    result = orchestrator.create_document_from_submission("missing")

    assert result.success is False
    assert result.error == "Submission missing not found"


def test_partial_signature_keeps_pending_signature(db_session, orchestrator, pending_signature):
    submission_id, document_id = pending_signature

    result = orchestrator.process_signature_webhook({
        "event": "document.signed",
        "document_id": document_id,
        "signer": {"email": "maria@empresa.com.br"},
        "all_signed": False,
    })

    assert result.success is True
    assert result.error is None
    assert _status(db_session, submission_id) == SubmissionStatus.PENDING_SIGNATURE.value
    assert _jobs(db_session, submission_id, JobType.AUTENTIQUE_DOWNLOAD) == []


def test_all_signed_queues_download(db_session, orchestrator, pending_signature):
    submission_id, document_id = pending_signature
    payload = {"event": "document.signed", "document_id": document_id, "all_signed": True}

    orchestrator.process_signature_webhook(payload)
    orchestrator.process_signature_webhook(payload)

    assert _status(db_session, submission_id) == SubmissionStatus.FULLY_SIGNED.value
    downloads = _jobs(db_session, submission_id, JobType.AUTENTIQUE_DOWNLOAD)
    assert [job.payload for job in downloads] == [{"document_id": document_id}]


def test_completed_event_stores_signed_document(db_session, orchestrator, autentique_client, pending_signature):
    submission_id, document_id = pending_signature
    hook = MagicMock()
    orchestrator.on_document_completed.append(hook)

    result = orchestrator.process_signature_webhook({"event": "document.completed", "document_id": document_id})

    assert result.error is None
    assert autentique_client.downloads == [document_id]
    assert _status(db_session, submission_id) == SubmissionStatus.COMPLETED.value

    repo = SubmissionRepository(db_session)
    url = repo.get_meta_value(submission_id, META_SIGNED_URL)
    assert url == f"http://files.test/uploads/formflow-signed/signed-{submission_id}-{document_id}.pdf"
    path = repo.get_meta_value(submission_id, META_SIGNED_PATH)
    with open(path, "rb") as f:
        assert f.read() == SIGNED_PDF
    hook.assert_called_once()
    assert hook.call_args[0][:2] == (submission_id, document_id)


def test_redelivered_completion_does_not_download_again(db_session, orchestrator, autentique_client, pending_signature):
    submission_id, document_id = pending_signature
    payload = {"event": "document.completed", "document_id": document_id}

    orchestrator.process_signature_webhook(payload)
    result = orchestrator.process_signature_webhook(payload)

    assert result.error is None
    assert autentique_client.downloads == [document_id]
    again = orchestrator.download_signed_document(document_id)
    assert again.success is True
    assert again.message == "Signed document already downloaded"


def test_refused_event(db_session, orchestrator, pending_signature):
    submission_id, document_id = pending_signature

    orchestrator.process_signature_webhook({"event": "document.refused", "document_id": document_id, "reason": "Wrong name"})

    assert _status(db_session, submission_id) == SubmissionStatus.SIGNATURE_REFUSED.value
    activity = activity_service.get_activity_by_submission(db_session, submission_id)
    assert activity[-1].level == "warning"
    assert activity[-1].context["reason"] == "Wrong name"


def test_completed_submission_cannot_move_backward(db_session, orchestrator, pending_signature):
    submission_id, document_id = pending_signature
    orchestrator.process_signature_webhook({"event": "document.completed", "document_id": document_id})

    result = orchestrator.process_signature_webhook({"event": "document.refused", "document_id": document_id})

    assert result.success is True
    assert result.error == "Cannot transition from completed to signature_refused"
    assert _status(db_session, submission_id) == SubmissionStatus.COMPLETED.value


def test_viewed_and_unknown_events_only_log(db_session, orchestrator, pending_signature):
    submission_id, document_id = pending_signature

    orchestrator.process_signature_webhook({"event": "document.viewed", "document_id": document_id, "viewer_email": "a@b.com.br"})
    orchestrator.process_signature_webhook({"event": "document.archived", "document_id": document_id})

    assert _status(db_session, submission_id) == SubmissionStatus.PENDING_SIGNATURE.value
    messages = [entry.message for entry in activity_service.get_activity_by_submission(db_session, submission_id)]
    assert messages[-2:] == ["Document viewed", "Unhandled webhook event"]


def test_webhook_for_unknown_document(orchestrator):
    result = orchestrator.process_signature_webhook({"event": "document.signed", "document_id": "doc-x"})

    assert result.success is True
    assert result.error == "Submission not found for document doc-x"


def test_webhook_missing_fields(orchestrator):
    result = orchestrator.process_signature_webhook({"document_id": "doc-1"})

    assert result.error == "Missing required webhook data"


def test_status_check_is_cached_and_recorded(db_session, orchestrator, autentique_client, pending_signature):
    submission_id, document_id = pending_signature

    first = orchestrator.check_document_status(document_id)
    second = orchestrator.check_document_status(document_id)

    assert first == second == {"id": document_id, "status": "pending"}
    assert autentique_client.status_calls == [document_id]
    assert SubmissionRepository(db_session).get_meta_value(submission_id, META_STATUS) == (
        '{"id": "' + document_id + '", "status": "pending"}'
    )


def test_status_check_reports_provider_error(orchestrator, autentique_client):
    autentique_client.error = ExternalServiceException("Autentique API Error (404): Not found", 404)

    assert orchestrator.check_document_status("doc-9") == {
        "success": False,
        "error": "Autentique API Error (404): Not found",
    }


def test_cancel_and_resend(orchestrator, autentique_client, pending_signature):
    submission_id, document_id = pending_signature

    cancelled = orchestrator.cancel_document(document_id, "Duplicated")
    resent = orchestrator.resend_signature_email(document_id, "maria@empresa.com.br")

    assert cancelled.success is True
    assert cancelled.submission_id == submission_id
    assert autentique_client.cancelled == [(document_id, "Duplicated")]
    assert resent.success is True
    assert autentique_client.resent == [(document_id, "maria@empresa.com.br")]


def test_temp_file_is_removed(db_session, cache_manager, orchestrator, tmp_path, monkeypatch):
    from formflow.core.config import settings

    temp_dir = tmp_path / "tmp"
    monkeypatch.setattr(settings, "temp_dir", str(temp_dir))
    submission_id = _submit(db_session, cache_manager)

    assert orchestrator.create_document_from_submission(submission_id).success is True
    assert os.listdir(temp_dir) == []


def test_download_for_unknown_document(orchestrator, autentique_client):
    result = orchestrator.download_signed_document("doc-x")

    assert result.success is False
    assert result.error == "Document doc-x not found"
    assert autentique_client.downloads == []


def test_create_document_twice_sends_one_document(db_session, cache_manager, orchestrator, autentique_client):
    submission_id = _submit(db_session, cache_manager)

    first = orchestrator.create_document_from_submission(submission_id)
    second = orchestrator.create_document_from_submission(submission_id)

    assert first.success is True
    assert second.success is True
    assert second.document_id == first.document_id
    assert second.message == "Document already sent for signature"
    assert second.status == SubmissionStatus.PENDING_SIGNATURE.value
    assert len(autentique_client.created) == 1
    assert len(_jobs(db_session, submission_id, JobType.AUTENTIQUE_STATUS_CHECK)) == 1


def test_create_document_rejects_finished_submission(db_session, cache_manager, orchestrator, autentique_client):
    submission_id = _submit(db_session, cache_manager)
    SubmissionRepository(db_session).transition_status(submission_id, SubmissionStatus.FAILED)
    db_session.commit()

    result = orchestrator.create_document_from_submission(submission_id)

    assert result.success is False
    assert result.error == "Cannot transition from failed to pending_signature"
    assert autentique_client.created == []


def test_webhook_with_null_signer_and_numeric_document(db_session, orchestrator, pending_signature):
    submission_id, document_id = pending_signature

    result = orchestrator.process_signature_webhook(
        {"event": "document.signed", "document_id": document_id, "signer": None, "all_signed": None}
    )

    assert result.error is None
    assert activity_service.get_activity_by_submission(db_session, submission_id)[-1].context["signer_email"] == "unknown"
    assert _status(db_session, submission_id) == SubmissionStatus.PENDING_SIGNATURE.value

    numeric = orchestrator.process_signature_webhook({"event": "document.signed", "document_id": 12345})
    assert numeric.error == "Submission not found for document 12345"
