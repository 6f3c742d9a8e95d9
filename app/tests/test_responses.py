"""
Tests for answer saves, placeholder responses, the response form and comments.
"""
import pytest

from app.core.errors import ConflictError, LockedError, NotFoundError, TransitionError, ValidationError
from app.db.models import AuditLog, PIRResponse, PIRStatus, ResponseStatus
from app.services import responses as response_service


def response_count(db, pir_id):
    return db.query(PIRResponse).filter(PIRResponse.pir_id == pir_id).count()


class TestPlaceholder:
    def test_repeated_calls_converge_to_one_row(self, db, world, pir_factory):
        request = pir_factory()

        first, created = response_service.ensure_placeholder_response(db, request.id, world.q_name.id)
        second, created_again = response_service.ensure_placeholder_response(db, request.id, world.q_name.id)
        db.commit()

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert response_count(db, request.id) == 1
        assert first.answer == {}
        assert ResponseStatus(first.status) == ResponseStatus.DRAFT


class TestSaveAnswer:
    def test_first_save_creates_a_draft_and_starts_progress(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory(status=PIRStatus.SENT)

        response = response_service.save_answer(db, request, world.q_name, "Acme GmbH", supplier_ctx)
        db.commit()

        assert response.answer == "Acme GmbH"
        assert response.version == 1
        assert ResponseStatus(response.status) == ResponseStatus.DRAFT
        assert request.status == PIRStatus.IN_PROGRESS

    def test_each_later_save_bumps_the_version(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory()
        response_service.save_answer(db, request, world.q_name, "Acme", supplier_ctx)
        response = response_service.save_answer(db, request, world.q_name, "Acme GmbH", supplier_ctx,
                                                expected_version=1)
        assert response.version == 2
        assert response_count(db, request.id) == 1

    def test_stale_version_is_a_conflict(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory()
        response_service.save_answer(db, request, world.q_name, "Acme", supplier_ctx)
        response_service.save_answer(db, request, world.q_name, "Acme GmbH", supplier_ctx)

        with pytest.raises(ConflictError) as exc_info:
            response_service.save_answer(db, request, world.q_name, "Other", supplier_ctx, expected_version=1)
        assert exc_info.value.extra == {"current_version": 2, "expected_version": 1}

    def test_invalid_answer_writes_nothing(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory()
        with pytest.raises(ValidationError):
            response_service.save_answer(db, request, world.q_svhc, "maybe", supplier_ctx)
        assert response_count(db, request.id) == 0

    def test_approved_answer_is_locked(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory(status=PIRStatus.FLAGGED, review_round=1)
        db.add(PIRResponse(pir_id=request.id, question_id=world.q_name.id, answer="Acme",
                           status=ResponseStatus.APPROVED))
        db.commit()

        with pytest.raises(LockedError):
            response_service.save_answer(db, request, world.q_name, "Changed", supplier_ctx)

    def test_no_edits_while_customer_reviews(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory(status=PIRStatus.IN_REVIEW)
        with pytest.raises(TransitionError):
            response_service.save_answer(db, request, world.q_name, "Acme", supplier_ctx)

    def test_save_in_own_session_commits_with_audit_row(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory()

        result = response_service.save_answer_in_session(request.id, world.q_name.id, "Acme", supplier_ctx)

        db.expire_all()
        saved = response_service.find_response(db, request.id, world.q_name.id)
        assert result == {"response_id": saved.id, "version": 1}
        assert saved.answer == "Acme"
        audit = db.query(AuditLog).filter(AuditLog.action == "save_answer").one()
        assert audit.details["deferred"] is True


class TestForm:
    def test_form_is_numbered_and_tracks_completion(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory(tags=[world.reach, world.packaging])
        response_service.save_answer(db, request, world.q_name, "Acme", supplier_ctx)
        db.commit()

        items = response_service.load_response_form(db, request, supplier_ctx)

        assert [(i.number, i.question.id) for i in items] == [
            ("1.1", world.q_name.id),
            ("2.1", world.q_components.id),
            ("2.1.1", world.q_svhc.id),
            ("2.1.2", world.q_table.id),
        ]
        assert [i.answered for i in items] == [True, False, False, False]
        assert not any(i.read_only for i in items)

        missing = response_service.unanswered_required(db, request)
        assert [q.id for q in missing] == [world.q_svhc.id]

    def test_form_is_read_only_for_the_customer(self, db, pir_factory, customer_ctx):
        request = pir_factory()
        items = response_service.load_response_form(db, request, customer_ctx)
        assert items and all(i.read_only for i in items)

    def test_question_outside_the_pir_is_not_found(self, db, world, pir_factory):
        request = pir_factory(tags=[world.reach])
        with pytest.raises(NotFoundError):
            response_service.get_pir_question(db, request, world.q_components.id)


class TestComments:
    def test_add_comment(self, db, world, pir_factory, supplier_ctx, customer_ctx):
        request = pir_factory()
        response = response_service.save_answer(db, request, world.q_name, "Acme", supplier_ctx)

        comment = response_service.add_comment(db, response, customer_ctx, "  Please add the legal entity  ")
        db.commit()

        assert comment.text == "Please add the legal entity"
        assert comment.user_name == customer_ctx.display_name
        assert [c.id for c in response_service.list_comments(response)] == [comment.id]

    def test_empty_comment_is_rejected(self, db, world, pir_factory, supplier_ctx):
        request = pir_factory()
        response = response_service.save_answer(db, request, world.q_name, "Acme", supplier_ctx)
        with pytest.raises(ValidationError):
            response_service.add_comment(db, response, supplier_ctx, "   ")
