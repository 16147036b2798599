from unittest.mock import patch

from sqlalchemy import select

from formflow.audit_trail.services import activity_service
from formflow.forms.models import FormStatus
from formflow.queue.repository import QueueRepository
from formflow.queue.schemas import JobPriority, JobType
from formflow.submissions.models import Submission
from formflow.submissions.repository import SubmissionRepository
from formflow.submissions.schemas import ClientContext, SubmissionStatus
from formflow.submissions.services import SubmissionIngestor
from formflow.testing_dependencies import (
    autentique_client,
    cache_manager,
    cache_session_factory,
    client,
    clock,
    db_session,
    local_storage,
    make_form,
    redis_client,
)

FORM_DATA = {
    "Name": "  <b>Maria</b>   Silva ",
    "email": "maria@empresa.com.br",
    "site": "https://empresa.com.br/contato",
    "interesses": ["<i>planos</i>", "suporte"],
    "comentario": "<script>alert(1)</script>Ola",
    "endereco": {"Cidade": "<b>Sao Paulo</b>", "cep": "01000"},
}


def test_process_submission_stores_sanitized_compressed_payload(db_session, cache_manager):
    form = make_form(db_session)
    ingestor = SubmissionIngestor(db_session, cache_manager)

    result = ingestor.process_submission(
        form.id,
        FORM_DATA,
        meta={"Origem!": "<em>landing</em>", "utm": {"source": "ads"}},
        client=ClientContext(ip_address="203.0.113.9", user_agent="<b>Mozilla</b>"),
    )

    assert result.success is True
    assert result.status == SubmissionStatus.PENDING

    submission = SubmissionRepository(db_session).get_submission(result.submission_id)
    assert submission.status == SubmissionStatus.PENDING.value
    assert submission.payload_compressed is True
    assert submission.ip_address == "203.0.113.9"
    assert submission.user_agent == "Mozilla"
    assert submission.processing_time_ms is not None
    assert ingestor.get_submission_data(submission) == {
        "name": "Maria Silva",
        "email": "maria@empresa.com.br",
        "site": "https://empresa.com.br/contato",
        "interesses": ["planos", "suporte"],
        "comentario": "Ola",
        "endereco": {"cidade": "Sao Paulo", "cep": "01000"},
    }

    meta = {m.meta_key: m.meta_value for m in SubmissionRepository(db_session).list_meta(result.submission_id)}
    assert meta == {"origem": "landing", "utm": '{"source": "ads"}'}


def test_process_submission_queues_downstream_jobs(db_session, cache_manager):
    form = make_form(db_session)

    result = SubmissionIngestor(db_session, cache_manager).process_submission(form.id, FORM_DATA)

    jobs = {job.job_type: job for job in QueueRepository(db_session).list_for_submission(result.submission_id)}
    assert set(jobs) == {JobType.GENERATE_PDF.value, JobType.SEND_AUTENTIQUE.value, JobType.SEND_EMAIL.value}
    assert jobs[JobType.GENERATE_PDF.value].priority == JobPriority.HIGH
    assert jobs[JobType.GENERATE_PDF.value].payload == {
        "submission_id": result.submission_id,
        "template_id": "pdf-tpl-1",
    }
    assert jobs[JobType.SEND_AUTENTIQUE.value].priority == JobPriority.HIGH
    assert jobs[JobType.SEND_EMAIL.value].priority == JobPriority.MEDIUM


def test_signature_job_needs_both_form_switches(db_session, cache_manager):
    form = make_form(db_session, settings={}, pdf_template_id=None, email_template_id=None)

    result = SubmissionIngestor(db_session, cache_manager).process_submission(form.id, FORM_DATA)

    assert result.success is True
    assert QueueRepository(db_session).list_for_submission(result.submission_id) == []


def test_unknown_form_fails_without_persisting(db_session, cache_manager):
    result = SubmissionIngestor(db_session, cache_manager).process_submission(404, FORM_DATA)

    assert result.success is False
    assert result.status == SubmissionStatus.FAILED
    assert result.submission_id
    assert result.error == "Form 404 not found or inactive"
    assert db_session.execute(select(Submission)).scalars().all() == []


def test_inactive_form_is_rejected(db_session, cache_manager):
    form = make_form(db_session, status=FormStatus.INACTIVE)

    result = SubmissionIngestor(db_session, cache_manager).process_submission(form.id, FORM_DATA)

    assert result.success is False
    assert cache_manager.get(f"form_{form.id}") is None


def test_empty_data_is_rejected(db_session, cache_manager):
    form = make_form(db_session)

    result = SubmissionIngestor(db_session, cache_manager).process_submission(form.id, {})

    assert result.success is False
    assert result.error == "Submission data is empty"
    assert db_session.execute(select(Submission)).scalars().all() == []


def test_validators_can_reject_data(db_session, cache_manager):
    form = make_form(db_session)

    def require_phone(data, form):
        if "phone" not in data:
            raise ValueError("phone is required")
        return data

    result = SubmissionIngestor(db_session, cache_manager, validators=[require_phone]).process_submission(
        form.id, FORM_DATA
    )

    assert result.success is False
    assert result.error == "phone is required"


def test_failure_after_persisting_marks_submission_failed(db_session, cache_manager):
    form = make_form(db_session)
    ingestor = SubmissionIngestor(db_session, cache_manager)

    with patch.object(ingestor.queue_repo, "enqueue", side_effect=RuntimeError("queue unavailable")):
        result = ingestor.process_submission(form.id, FORM_DATA)

    assert result.success is False
    assert result.error == "queue unavailable"
    submission = SubmissionRepository(db_session).get_submission(result.submission_id)
    assert submission.status == SubmissionStatus.FAILED.value

    activity = activity_service.get_activity_by_submission(db_session, result.submission_id)
    assert [entry.message for entry in activity] == ["queue unavailable"]
    assert activity[0].level == "error"


def test_success_is_recorded_in_activity_log(db_session, cache_manager):
    form = make_form(db_session)

    result = SubmissionIngestor(db_session, cache_manager).process_submission(form.id, FORM_DATA)

    activity = activity_service.get_activity_by_submission(db_session, result.submission_id)
    assert [entry.message for entry in activity] == ["Submission processed successfully"]
    assert activity[0].category == "processing"


def test_form_lookup_is_cached(db_session, cache_manager):
    form = make_form(db_session)
    ingestor = SubmissionIngestor(db_session, cache_manager)

    ingestor.process_submission(form.id, FORM_DATA)
    ingestor.process_submission(form.id, FORM_DATA)

    assert cache_manager.get(f"form_{form.id}")["name"] == "Contrato de Adesao"
    assert cache_manager.stats()["l1_hits"] >= 1


def test_client_ip_resolution_order():
    headers = {
        "CF-Connecting-IP": "198.51.100.7",
        "X-Forwarded-For": "203.0.113.1, 10.0.0.1",
        "User-Agent": "Mozilla",
        "Referer": "https://empresa.com.br/form",
    }
    assert ClientContext.from_headers(headers, "10.0.0.9").ip_address == "198.51.100.7"

    del headers["CF-Connecting-IP"]
    context = ClientContext.from_headers(headers, "10.0.0.9")
    assert context.ip_address == "203.0.113.1"
    assert context.user_agent == "Mozilla"
    assert context.referrer_url == "https://empresa.com.br/form"

    assert ClientContext.from_headers({}, "10.0.0.9").ip_address == "10.0.0.9"
    assert ClientContext.from_headers({}).ip_address == "0.0.0.0"


def test_submission_endpoint(client, db_session):
    form = make_form(db_session)

    response = client.post(
        f"/forms/{form.id}/submissions",
        json={"data": {"name": "Joao", "email": "joao@empresa.com.br"}},
        headers={"X-Forwarded-For": "203.0.113.5"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "pending"
    submission = SubmissionRepository(db_session).get_submission(body["submission_id"])
    assert submission.ip_address == "203.0.113.5"


def test_submission_endpoint_reports_failure(client, db_session):
    response = client.post("/forms/999/submissions", json={"data": {"name": "Joao"}})

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["status"] == "failed"
    assert body["error"] == "Form 999 not found or inactive"
