"""
ImportService end to end: upload, preview, mapping, validation, apply
through the job queue, reporting, cancel/delete and rollback.

Each step runs in its own committed unit of work, as the API does.
"""

from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import select

from coop_ingestion.domain.types import (
    DuplicateHandling,
    FieldMapping,
    FileType,
    ImportStatus,
    ImportType,
    ValidationOptions,
)
from coop_ingestion.models.session import ImportSessionModel
from coop_ingestion.services import UploadedFile, infer_file_type
from coop_kernel.db.engine import session_scope
from coop_kernel.exceptions import (
    FileFormatError,
    FileTooLargeError,
    ImportSessionForbiddenError,
    ImportSessionNotFoundError,
    ImportTemplateMismatchError,
    InvalidCustomRuleError,
    InvalidStatusTransitionError,
    MappingColumnError,
    MappingRequiredError,
    RollbackAlreadyPerformedError,
    RollbackForbiddenError,
    RollbackNotAllowedError,
    UnsupportedFileTypeError,
    UnsupportedMediaTypeError,
    ValidationBlockingError,
)
from coop_kernel.models import Loan, User

MEMBERS_CSV = (
    "Email,First Name,Last Name\n"
    "ann@example.com,Ann,Lee\n"
    "bob@example.com,Robert,Marsh\n"
)

MEMBER_MAPPING = (
    FieldMapping("Email", "email", required=True),
    FieldMapping("First Name", "firstName", required=True),
    FieldMapping("Last Name", "lastName", required=True),
)

LOANS_CSV = (
    "Borrower,Amount,Purpose\n"
    "ann@example.com,1500,New sewing machines\n"
    "ghost@example.com,900,Market stall stock\n"
    "ann@example.com,2000,Workshop roof repairs\n"
)

LOAN_MAPPING = (
    FieldMapping("Borrower", "borrowerEmail", required=True),
    FieldMapping("Amount", "amount", required=True),
    FieldMapping("Purpose", "purpose", required=True),
)


@pytest.fixture
def run(orchestrator):
    """Run ``fn(service)`` in one committed unit of work."""

    def _run(fn):
        with session_scope(orchestrator.session_factory) as db:
            return fn(orchestrator.import_service(db))

    return _run


@pytest.fixture
def upload(run, test_actor_id):
    def _upload(
        content: str = MEMBERS_CSV,
        import_type: ImportType = ImportType.USERS,
        name: str = "members.csv",
        actor_id=None,
        **kwargs,
    ):
        file = UploadedFile(name, content.encode("utf-8"), "text/csv")
        return run(lambda s: s.create_session(actor_id or test_actor_id, file, import_type, **kwargs))

    return _upload


@pytest.fixture
def validated(run, upload):
    """A session taken through preview, mapping and validation."""

    def _validated(
        content: str = MEMBERS_CSV,
        mapping=MEMBER_MAPPING,
        rules: ValidationOptions | None = None,
        import_type: ImportType = ImportType.USERS,
    ):
        created = upload(content, import_type)
        run(lambda s: s.preview(created.session_id))
        run(lambda s: s.update_mapping(created.session_id, mapping, rules))
        result = run(lambda s: s.validate(created.session_id))
        return created.session_id, result

    return _validated


@pytest.fixture
def seed_member(orchestrator, make_user):
    def _seed(email: str, **kwargs) -> User:
        with session_scope(orchestrator.session_factory) as db:
            return make_user(db, email, **kwargs)

    return _seed


@pytest.fixture
def worker(orchestrator):
    return orchestrator.create_worker()


def _emails(orchestrator) -> list[str]:
    with session_scope(orchestrator.session_factory) as db:
        return sorted(db.execute(select(User.email)).scalars().all())


# =============================================================================
# Upload
# =============================================================================


class TestCreateSession:
    def test_stores_file_and_creates_pending_session(self, upload, app_config, test_actor_id):
        created = upload()

        assert created.status == ImportStatus.PENDING
        assert created.file_type == FileType.CSV
        assert created.created_by == test_actor_id
        assert created.session_number.startswith("IMP-")
        stored = Path(created.file_path)
        assert stored.parent == app_config.upload.upload_dir
        assert stored.read_text(encoding="utf-8") == MEMBERS_CSV

    def test_rejects_oversized_upload(self, run, test_actor_id, app_config):
        big = UploadedFile("big.csv", b"x" * (app_config.upload.max_file_size + 1), "text/csv")
        with pytest.raises(FileTooLargeError):
            run(lambda s: s.create_session(test_actor_id, big, ImportType.USERS))

    def test_rejects_unknown_mime_type(self, run, test_actor_id):
        file = UploadedFile("a.csv", b"a,b\n1,2\n", "application/pdf")
        with pytest.raises(UnsupportedMediaTypeError):
            run(lambda s: s.create_session(test_actor_id, file, ImportType.USERS))

    def test_empty_file_is_rejected_and_not_kept(self, upload, app_config):
        with pytest.raises(FileFormatError):
            upload("")
        assert list(app_config.upload.upload_dir.iterdir()) == []

    def test_file_type_from_extension(self):
        assert infer_file_type("Members.XLSX") == FileType.EXCEL
        assert infer_file_type("members.csv") == FileType.CSV
        with pytest.raises(UnsupportedFileTypeError):
            infer_file_type("members.pdf")
        with pytest.raises(UnsupportedFileTypeError):
            infer_file_type("members.xls")

    def test_legacy_xls_upload_is_refused_before_storing(self, run, test_actor_id, app_config):
        file = UploadedFile("members.xls", b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", "application/vnd.ms-excel")
        with pytest.raises(UnsupportedFileTypeError) as exc_info:
            run(lambda s: s.create_session(test_actor_id, file, ImportType.USERS))
        assert exc_info.value.file_type == ".xls"
        assert not any(app_config.upload.upload_dir.glob("*.xls"))

    def test_unknown_session(self, run):
        with pytest.raises(ImportSessionNotFoundError):
            run(lambda s: s.get_session(uuid4()))


class TestListSessions:
    def test_only_callers_sessions_newest_first(self, upload, run, deterministic_clock,
                                               test_actor_id, other_actor_id):
        first = upload()
        deterministic_clock.advance(60)
        second = upload(import_type=ImportType.LOANS, content=LOANS_CSV)
        upload(actor_id=other_actor_id)

        page = run(lambda s: s.list_sessions(test_actor_id))
        assert page.total == 2
        assert [s.session_id for s in page.sessions] == [second.session_id, first.session_id]

        loans_only = run(lambda s: s.list_sessions(test_actor_id, import_type=ImportType.LOANS))
        assert [s.session_id for s in loans_only.sessions] == [second.session_id]

    def test_limit_is_capped(self, upload, run, test_actor_id, app_config):
        upload()
        page = run(lambda s: s.list_sessions(test_actor_id, page=0, limit=10_000))
        assert page.page == 1
        assert page.limit == app_config.imports.max_page_size


# =============================================================================
# Preview / mapping / validation
# =============================================================================


class TestPreviewAndMapping:
    def test_preview_moves_to_parsing_and_suggests_fields(self, run, upload):
        created = upload()
        preview = run(lambda s: s.preview(created.session_id))

        assert preview.columns == ("Email", "First Name", "Last Name")
        assert preview.total_rows == 2
        assert [s.suggested_field for s in preview.suggested_mapping] == [
            "email", "firstName", "lastName",
        ]
        session = run(lambda s: s.get_session(created.session_id))
        assert session.status == ImportStatus.PARSING
        assert session.total_rows == 2

    def test_mapping_pins_column_positions(self, run, upload):
        created = upload()
        run(lambda s: s.preview(created.session_id))
        reordered = (MEMBER_MAPPING[2], MEMBER_MAPPING[0], MEMBER_MAPPING[1])
        session = run(lambda s: s.update_mapping(created.session_id, reordered))

        assert session.status == ImportStatus.MAPPED
        assert [(m.column_name, m.column_index) for m in session.column_mapping] == [
            ("Last Name", 2), ("Email", 0), ("First Name", 1),
        ]

    def test_empty_mapping_rejected(self, run, upload):
        created = upload()
        run(lambda s: s.preview(created.session_id))
        with pytest.raises(MappingRequiredError):
            run(lambda s: s.update_mapping(created.session_id, ()))

    def test_unknown_column_rejected(self, run, upload):
        created = upload()
        run(lambda s: s.preview(created.session_id))
        with pytest.raises(MappingColumnError):
            run(lambda s: s.update_mapping(created.session_id, (FieldMapping("Mail", "email"),)))

    def test_malformed_custom_rule_rejected_at_mapping(self, run, upload):
        created = upload()
        run(lambda s: s.preview(created.session_id))
        rules = ValidationOptions(custom_rules=({"field": "email", "pattern": "("},))

        with pytest.raises(InvalidCustomRuleError) as exc_info:
            run(lambda s: s.update_mapping(created.session_id, MEMBER_MAPPING, rules))
        assert exc_info.value.rule_index == 0
        assert run(lambda s: s.get_session(created.session_id)).status == ImportStatus.PARSING

    def test_stored_malformed_rule_fails_validation_with_typed_error(
        self, run, upload, orchestrator,
    ):
        created = upload()
        run(lambda s: s.preview(created.session_id))
        run(lambda s: s.update_mapping(created.session_id, MEMBER_MAPPING))
        with session_scope(orchestrator.session_factory) as db:
            model = db.get(ImportSessionModel, created.session_id)
            model.validation_rules = {"customRules": [{"field": "firstName", "min": "2"}]}

        with pytest.raises(InvalidCustomRuleError):
            run(lambda s: s.validate(created.session_id))
        assert run(lambda s: s.get_session(created.session_id)).status == ImportStatus.MAPPED

    def test_validate_requires_mapping(self, run, upload):
        created = upload()
        with pytest.raises(MappingRequiredError):
            run(lambda s: s.validate(created.session_id))

    def test_validation_persists_findings_and_stays_in_validating(self, run, validated):
        session_id, result = validated(MEMBERS_CSV + "carl@example,Carl,Dunn\n")

        assert not result.is_valid
        assert [(f.row_number, f.error_code) for f in result.errors] == [(3, "INVALID_EMAIL")]
        report = run(lambda s: s.get_report(session_id))
        assert report["status"] == ImportStatus.VALIDATING.value
        assert report["summary"]["errors"] == 1
        assert report["validations"][0]["columnName"] == "Email"

    def test_validation_is_logged_with_session_context(self, validated, captured_logs):
        session_id, _ = validated()
        [record] = [r for r in captured_logs() if r["message"] == "import_validated"]
        assert record["session_id"] == str(session_id)
        assert record["import_type"] == "USERS"
        assert record["is_valid"] is True

    def test_revalidation_is_deterministic(self, run, validated):
        content = MEMBERS_CSV + "carl@example,C,Dunn\nann@example.com,Ann,Again\n"
        session_id, first = validated(content)
        second = run(lambda s: s.validate(session_id))

        assert first.findings == second.findings
        persisted = run(lambda s: s.get_report(session_id))["validations"]
        assert len(persisted) == len(second.findings)

    def test_remapping_after_validation_discards_findings(self, run, validated):
        session_id, result = validated(MEMBERS_CSV + "carl@example,Carl,Dunn\n")
        assert result.errors
        run(lambda s: s.update_mapping(session_id, MEMBER_MAPPING))
        report = run(lambda s: s.get_report(session_id))
        assert report["status"] == ImportStatus.MAPPED.value
        assert report["validations"] == []


# =============================================================================
# Start / apply
# =============================================================================


class TestStartAndApply:
    def test_errors_block_start(self, run, validated):
        session_id, _ = validated(MEMBERS_CSV + "carl@example,Carl,Dunn\n")

        with pytest.raises(ValidationBlockingError) as exc_info:
            run(lambda s: s.start_import(session_id, s.get_session(session_id).created_by))
        assert exc_info.value.error_count == 1

        status = run(lambda s: s.get_status(session_id))
        assert status["status"] == ImportStatus.VALIDATING.value
        assert status["progress"]["processedRows"] == 0

    def test_start_requires_validation(self, run, upload, test_actor_id):
        created = upload()
        with pytest.raises(InvalidStatusTransitionError):
            run(lambda s: s.start_import(created.session_id, test_actor_id))

    def test_users_import_completes_through_the_worker(
        self, run, validated, worker, orchestrator, seed_member, test_actor_id,
    ):
        seed_member("bob@example.com", first_name="Bobby")
        session_id, result = validated()
        assert result.is_valid

        started = run(lambda s: s.start_import(session_id, test_actor_id))
        assert "jobId" in started
        assert run(lambda s: s.get_status(session_id))["status"] == ImportStatus.IMPORTING.value

        [job_result] = worker.run_until_idle()
        assert job_result.error is None

        session = run(lambda s: s.get_session(session_id))
        assert session.status == ImportStatus.COMPLETED
        assert (session.processed_rows, session.success_rows, session.failed_rows) == (2, 2, 0)
        assert session.can_rollback
        assert len(session.rollback_data["createdUsers"]) == 1
        assert session.success_report["updated"][0]["reference"] == "bob@example.com"
        assert _emails(orchestrator) == ["ann@example.com", "bob@example.com"]

        status = run(lambda s: s.get_status(session_id))
        assert status["progress"]["percentage"] == 100
        assert status["estimatedCompletion"] is None

    def test_loans_row_failure_does_not_abort_the_run(
        self, run, validated, worker, orchestrator, seed_member, test_actor_id,
    ):
        seed_member("ann@example.com")
        session_id, result = validated(LOANS_CSV, LOAN_MAPPING, import_type=ImportType.LOANS)
        assert result.is_valid

        run(lambda s: s.start_import(session_id, test_actor_id))
        worker.run_until_idle()

        report = run(lambda s: s.get_report(session_id))
        assert report["status"] == ImportStatus.COMPLETED.value
        assert (report["successRows"], report["failedRows"]) == (2, 1)
        [error] = report["errorReport"]["errors"]
        assert error["row"] == 2
        assert error["code"] == "BORROWER_NOT_FOUND"
        with session_scope(orchestrator.session_factory) as db:
            assert len(db.execute(select(Loan)).scalars().all()) == 2

    def test_start_twice_is_rejected(self, run, validated, test_actor_id):
        session_id, _ = validated()
        run(lambda s: s.start_import(session_id, test_actor_id))
        with pytest.raises(InvalidStatusTransitionError):
            run(lambda s: s.start_import(session_id, test_actor_id))


# =============================================================================
# Cancel / delete
# =============================================================================


class TestCancelAndDelete:
    def test_cancel_pending_session(self, run, upload, test_actor_id):
        created = upload()
        cancelled = run(lambda s: s.cancel(created.session_id, test_actor_id))
        assert cancelled.status == ImportStatus.CANCELLED
        assert cancelled.completed_at is not None

    def test_cancel_after_validation(self, run, validated, test_actor_id):
        session_id, _ = validated()
        assert run(lambda s: s.cancel(session_id, test_actor_id)).status == ImportStatus.CANCELLED

    def test_cannot_cancel_importing_session(self, run, validated, test_actor_id):
        session_id, _ = validated()
        run(lambda s: s.start_import(session_id, test_actor_id))
        with pytest.raises(InvalidStatusTransitionError):
            run(lambda s: s.cancel(session_id, test_actor_id))

    @pytest.mark.parametrize(
        "status",
        [ImportStatus.IMPORTING, ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.CANCELLED],
    )
    def test_cancel_refused_once_past_validation(
        self, run, upload, orchestrator, test_actor_id, status,
    ):
        created = upload()
        with session_scope(orchestrator.session_factory) as db:
            db.get(ImportSessionModel, created.session_id).status = status.value

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            run(lambda s: s.cancel(created.session_id, test_actor_id))
        assert exc_info.value.current_status == status.value
        assert exc_info.value.target_status == ImportStatus.CANCELLED.value

        session = run(lambda s: s.get_session(created.session_id))
        assert session.status == status
        assert session.completed_at is None

    def test_only_owner_can_cancel(self, run, upload, other_actor_id):
        created = upload()
        with pytest.raises(ImportSessionForbiddenError):
            run(lambda s: s.cancel(created.session_id, other_actor_id))

    def test_delete_removes_session_and_file(self, run, validated, test_actor_id):
        session_id, _ = validated()
        file_path = Path(run(lambda s: s.get_session(session_id)).file_path)

        run(lambda s: s.delete_session(session_id, test_actor_id))

        assert not file_path.exists()
        with pytest.raises(ImportSessionNotFoundError):
            run(lambda s: s.get_session(session_id))

    def test_delete_refused_while_importing(self, run, validated, test_actor_id):
        session_id, _ = validated()
        run(lambda s: s.start_import(session_id, test_actor_id))
        with pytest.raises(InvalidStatusTransitionError):
            run(lambda s: s.delete_session(session_id, test_actor_id))

    def test_only_owner_can_delete(self, run, upload, other_actor_id):
        created = upload()
        with pytest.raises(ImportSessionForbiddenError):
            run(lambda s: s.delete_session(created.session_id, other_actor_id))


# =============================================================================
# Rollback
# =============================================================================


class TestRollback:
    @pytest.fixture
    def completed_users_import(self, run, validated, worker, seed_member, test_actor_id):
        seed_member("bob@example.com", first_name="Bobby")
        session_id, _ = validated()
        run(lambda s: s.start_import(session_id, test_actor_id))
        worker.run_until_idle()
        return session_id

    def test_deletes_created_users_only(
        self, run, worker, orchestrator, completed_users_import, test_actor_id,
    ):
        session_id = completed_users_import
        run(lambda s: s.request_rollback(session_id, test_actor_id))
        worker.run_until_idle()

        assert _emails(orchestrator) == ["bob@example.com"]
        with session_scope(orchestrator.session_factory) as db:
            bob = db.execute(select(User).where(User.email == "bob@example.com")).scalar_one()
            # Updates are not reversed
            assert bob.first_name == "Robert"

        report = run(lambda s: s.get_report(session_id))
        assert report["rolledBackAt"] is not None
        assert report["status"] == ImportStatus.COMPLETED.value

    def test_second_request_rejected(self, run, worker, completed_users_import, test_actor_id):
        session_id = completed_users_import
        run(lambda s: s.request_rollback(session_id, test_actor_id))
        with pytest.raises(RollbackAlreadyPerformedError):
            run(lambda s: s.request_rollback(session_id, test_actor_id))
        worker.run_until_idle()
        with pytest.raises(RollbackAlreadyPerformedError):
            run(lambda s: s.request_rollback(session_id, test_actor_id))

    def test_owner_only(self, run, completed_users_import, other_actor_id):
        with pytest.raises(RollbackForbiddenError):
            run(lambda s: s.request_rollback(completed_users_import, other_actor_id))

    def test_not_before_completion(self, run, validated, test_actor_id):
        session_id, _ = validated()
        with pytest.raises(RollbackNotAllowedError):
            run(lambda s: s.request_rollback(session_id, test_actor_id))


# =============================================================================
# Templates
# =============================================================================


class TestTemplateSessions:
    def test_template_prefills_mapping_and_rules(self, orchestrator, upload, test_actor_id):
        with session_scope(orchestrator.session_factory) as db:
            template = orchestrator.template_service(db).create_template(
                test_actor_id,
                "Members",
                ImportType.USERS,
                column_mapping=(MEMBER_MAPPING[2], MEMBER_MAPPING[0]),
                validation_rules=ValidationOptions(duplicate_handling=DuplicateHandling.SKIP),
            )

        created = upload(template_id=template.template_id)

        assert created.template_id == template.template_id
        assert [(m.field_name, m.column_index) for m in created.column_mapping] == [
            ("lastName", 2), ("email", 0),
        ]
        assert created.validation_rules.duplicate_handling == DuplicateHandling.SKIP

    def test_template_for_another_type_rejected(self, orchestrator, upload, test_actor_id):
        with session_scope(orchestrator.session_factory) as db:
            template = orchestrator.template_service(db).create_template(
                test_actor_id, "Loans", ImportType.LOANS, column_mapping=LOAN_MAPPING,
            )
        with pytest.raises(ImportTemplateMismatchError):
            upload(template_id=template.template_id)

    def test_template_column_missing_from_file(self, orchestrator, upload, test_actor_id, app_config):
        with session_scope(orchestrator.session_factory) as db:
            template = orchestrator.template_service(db).create_template(
                test_actor_id, "Members", ImportType.USERS,
                column_mapping=(FieldMapping("E-mail address", "email"),),
            )
        with pytest.raises(MappingColumnError):
            upload(template_id=template.template_id)
        assert list(app_config.upload.upload_dir.iterdir()) == []
