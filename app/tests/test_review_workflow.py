"""
Tests for the customer review: batch decisions, flags, rounds and locking.
"""
import pytest

from app.core.errors import LockedError, TransitionError, ValidationError
from app.db.models import FlagStatus, PIRResponse, PIRStatus, ResponseFlag, ResponseStatus
from app.services import pir_lifecycle, review as review_service
from app.services import responses as response_service
from app.services.notifications import NotificationDispatcher, NotificationType
from app.services.review import ReviewDecision, ReviewStatus

APPROVE = ReviewStatus.APPROVED
FLAG = ReviewStatus.FLAGGED


@pytest.fixture
def submitted(db, world, pir_factory, supplier_ctx):
    """A PIR with three answered questions, submitted for review."""
    request = pir_factory()
    a = response_service.save_answer(db, request, world.q_name, "Acme GmbH", supplier_ctx)
    b = response_service.save_answer(db, request, world.q_svhc, False, supplier_ctx)
    c = response_service.save_answer(db, request, world.q_table, [
        {"Substance": "Lead", "Concentration": {"Value": 0.05, "Unit": "%"}},
    ], supplier_ctx)
    pir_lifecycle.submit_pir(db, request)
    db.commit()
    return request, a, b, c


def flags_of(db, response):
    return db.query(ResponseFlag).filter(ResponseFlag.response_id == response.id).order_by(ResponseFlag.id).all()


def statuses(db, request):
    return {
        r.id: ResponseStatus(r.status)
        for r in db.query(PIRResponse).filter(PIRResponse.pir_id == request.id)
    }


class TestFirstRound:
    def test_flag_one_answer(self, db, submitted, customer_ctx):
        request, a, b, c = submitted

        outcome = review_service.submit_review(db, request, [
            ReviewDecision(a.id, APPROVE),
            ReviewDecision(b.id, APPROVE),
            ReviewDecision(c.id, FLAG, "missing CAS number"),
        ], customer_ctx)

        assert outcome.pir_status == PIRStatus.FLAGGED
        assert request.status == PIRStatus.FLAGGED
        assert request.review_round == 1
        assert sorted(outcome.approved_ids) == sorted([a.id, b.id])
        assert outcome.flagged_ids == [c.id]
        flags = db.query(ResponseFlag).all()
        assert len(flags) == 1
        assert flags[0].response_id == c.id
        assert flags[0].description == "missing CAS number"
        assert FlagStatus(flags[0].status) == FlagStatus.OPEN
        assert outcome.new_flag_ids == [flags[0].id]
        assert statuses(db, request) == {
            a.id: ResponseStatus.APPROVED,
            b.id: ResponseStatus.APPROVED,
            c.id: ResponseStatus.FLAGGED,
        }

    def test_approve_everything(self, db, world, submitted, customer_ctx):
        request, a, b, c = submitted

        outcome = review_service.submit_review(
            db, request, [ReviewDecision(r.id, APPROVE) for r in (a, b, c)], customer_ctx,
            product_id=world.product.id,
        )

        assert outcome.pir_status == PIRStatus.APPROVED
        assert request.product_id == world.product.id
        assert pir_lifecycle.is_locked(request)

    def test_flag_without_note_is_rejected_and_nothing_changes(self, db, submitted, customer_ctx):
        request, a, b, c = submitted

        with pytest.raises(ValidationError, match="note is required"):
            review_service.submit_review(db, request, [
                ReviewDecision(a.id, APPROVE),
                ReviewDecision(b.id, APPROVE),
                ReviewDecision(c.id, FLAG, "   "),
            ], customer_ctx)

        db.expire_all()
        assert db.query(ResponseFlag).count() == 0
        assert request.status == PIRStatus.SUBMITTED
        assert set(statuses(db, request).values()) == {ResponseStatus.SUBMITTED}

    def test_every_answer_needs_a_decision(self, db, submitted, customer_ctx):
        request, a, b, c = submitted

        with pytest.raises(ValidationError) as exc_info:
            review_service.submit_review(db, request, [ReviewDecision(a.id, APPROVE)], customer_ctx)

        assert exc_info.value.extra["pending_count"] == 2
        assert sorted(exc_info.value.extra["pending_response_ids"]) == sorted([b.id, c.id])

    def test_foreign_response_is_rejected(self, db, submitted, customer_ctx):
        request, a, b, c = submitted
        with pytest.raises(ValidationError, match="does not belong"):
            review_service.submit_review(db, request, [ReviewDecision(9999, APPROVE)], customer_ctx)

    def test_review_needs_a_submission(self, db, pir_factory, customer_ctx):
        request = pir_factory(status=PIRStatus.IN_PROGRESS)
        with pytest.raises(TransitionError):
            review_service.submit_review(db, request, [], customer_ctx)


class TestSecondRound:
    @pytest.fixture
    def flagged(self, db, submitted, customer_ctx):
        request, a, b, c = submitted
        review_service.submit_review(db, request, [
            ReviewDecision(a.id, APPROVE),
            ReviewDecision(b.id, APPROVE),
            ReviewDecision(c.id, FLAG, "missing CAS number"),
        ], customer_ctx)
        return submitted

    def test_resubmit_and_approve(self, db, world, flagged, supplier_ctx, customer_ctx):
        request, a, b, c = flagged
        response_service.save_answer(db, request, world.q_table, [
            {"Substance": "Lead (CAS 7439-92-1)", "Concentration": {"Value": 0.05, "Unit": "%"}},
        ], supplier_ctx)
        changed = pir_lifecycle.submit_pir(db, request)
        db.commit()
        assert [r.id for r in changed] == [c.id]

        state = review_service.load_review(db, request)
        assert state.later_round
        assert [i.response.id for i in review_service.filter_items(state, "all")] == [c.id]
        assert review_service.filter_items(state, "pending") == []
        assert state.item(c.id).note == "missing CAS number"

        outcome = review_service.submit_review(
            db, request, [ReviewDecision(c.id, APPROVE)], customer_ctx, product_id=world.product.id,
        )

        assert outcome.pir_status == PIRStatus.APPROVED
        assert request.review_round == 2
        assert request.product_id == world.product.id
        flag = flags_of(db, c)[0]
        assert FlagStatus(flag.status) == FlagStatus.RESOLVED
        assert flag.resolved_by == customer_ctx.user_id
        assert set(statuses(db, request).values()) == {ResponseStatus.APPROVED}

    def test_previously_approved_answer_cannot_be_flagged(self, db, flagged, customer_ctx):
        request, a, b, c = flagged
        pir_lifecycle.submit_pir(db, request)
        db.commit()

        with pytest.raises(LockedError):
            review_service.submit_review(db, request, [
                ReviewDecision(a.id, FLAG, "changed my mind"),
                ReviewDecision(c.id, APPROVE),
            ], customer_ctx)

    def test_repeating_the_same_flag_adds_no_history(self, db, flagged, customer_ctx):
        request, a, b, c = flagged

        outcome = review_service.submit_review(
            db, request, [ReviewDecision(c.id, FLAG, "missing CAS number")], customer_ctx,
        )

        assert outcome.pir_status == PIRStatus.FLAGGED
        assert outcome.new_flag_ids == []
        assert len(flags_of(db, c)) == 1

    def test_new_note_adds_a_flag(self, db, flagged, customer_ctx):
        request, a, b, c = flagged

        review_service.submit_review(
            db, request, [ReviewDecision(c.id, FLAG, "also missing concentration unit")], customer_ctx,
        )

        assert [f.description for f in flags_of(db, c)] == [
            "missing CAS number", "also missing concentration unit",
        ]


class TestLocking:
    def test_approved_review_is_closed(self, db, submitted, customer_ctx):
        request, a, b, c = submitted
        review_service.submit_review(db, request, [ReviewDecision(r.id, APPROVE) for r in (a, b, c)], customer_ctx)

        with pytest.raises(LockedError):
            review_service.submit_review(db, request, [ReviewDecision(a.id, APPROVE)], customer_ctx)

        state = review_service.load_review(db, request)
        assert state.locked
        assert all(i.read_only for i in state.items)
        assert len(review_service.filter_items(state, "all")) == 3


class TestTabs:
    def test_unknown_tab(self, db, submitted):
        request = submitted[0]
        with pytest.raises(ValidationError):
            review_service.filter_items(review_service.load_review(db, request), "archived")

    def test_first_round_tabs(self, db, submitted):
        request, a, b, c = submitted
        state = review_service.load_review(db, request)

        assert [i.number for i in state.items] == ["1.1", "2.1.1", "2.1.2"]
        assert len(review_service.filter_items(state, "pending")) == 3
        assert review_service.filter_items(state, "flagged") == []
        assert state.item(c.id).answer_display == "1 row"


class TestNotification:
    def test_supplier_is_told_what_to_fix(self, db, submitted, customer_ctx):
        request, a, b, c = submitted
        queued = []

        outcome = review_service.submit_review(db, request, [
            ReviewDecision(a.id, APPROVE),
            ReviewDecision(b.id, APPROVE),
            ReviewDecision(c.id, FLAG, "missing CAS number"),
        ], customer_ctx, notifier=NotificationDispatcher(enqueue=queued.append, enabled=True))

        assert outcome.warnings == []
        assert [p["type"] for p in queued] == [
            NotificationType.PIR_STATUS_UPDATE.value, NotificationType.REVIEW_COMPLETED.value,
        ]
        assert queued[0]["pir"]["status"] == "in_review"
        assert queued[0]["recipients"] == ["compliance@packright.test"]
        payload = queued[1]
        assert payload["type"] == NotificationType.REVIEW_COMPLETED.value
        assert payload["recipients"] == ["compliance@packright.test"]
        assert payload["pir"]["status_label"] == "Changes Requested"
        assert payload["extra"]["approved_count"] == 2
        assert payload["extra"]["flagged"] == [
            {"number": "2.1.2", "question": "List substances of very high concern", "note": "missing CAS number"},
        ]

    def test_opened_review_is_not_announced_twice(self, db, submitted, customer_ctx):
        request, a, b, c = submitted
        pir_lifecycle.begin_review(request)
        db.commit()
        queued = []

        review_service.submit_review(
            db, request, [ReviewDecision(r.id, APPROVE) for r in (a, b, c)], customer_ctx,
            notifier=NotificationDispatcher(enqueue=queued.append, enabled=True),
        )

        assert [p["type"] for p in queued] == [NotificationType.REVIEW_COMPLETED.value]


class TestAnswersSavedWhileFlagged:
    @pytest.fixture
    def flagged_with_late_answer(self, db, world, pir_factory, supplier_ctx, customer_ctx):
        """Round 1 leaves one question blank; the supplier answers it while flagged."""
        request = pir_factory()
        a = response_service.save_answer(db, request, world.q_name, "Acme GmbH", supplier_ctx)
        c = response_service.save_answer(db, request, world.q_table, [], supplier_ctx)
        pir_lifecycle.submit_pir(db, request)
        db.commit()
        review_service.submit_review(db, request, [
            ReviewDecision(a.id, APPROVE),
            ReviewDecision(c.id, FLAG, "list is empty"),
        ], customer_ctx)

        late = response_service.save_answer(db, request, world.q_svhc, True, supplier_ctx)
        db.commit()
        return request, a, c, late

    def test_unsubmitted_answer_is_not_reviewable(self, db, flagged_with_late_answer):
        request, a, c, late = flagged_with_late_answer
        assert ResponseStatus(late.status) == ResponseStatus.DRAFT

        state = review_service.load_review(db, request)

        assert state.item(late.id) is None
        assert state.unsubmitted_ids == [late.id]
        assert [i.response.id for i in review_service.filter_items(state, "all")] == [c.id]

    def test_deciding_on_an_unsubmitted_answer_is_a_validation_error(self, db, flagged_with_late_answer,
                                                                     customer_ctx):
        request, a, c, late = flagged_with_late_answer

        with pytest.raises(ValidationError, match="has not been submitted"):
            review_service.submit_review(db, request, [
                ReviewDecision(c.id, APPROVE),
                ReviewDecision(late.id, APPROVE),
            ], customer_ctx)

        db.expire_all()
        assert PIRStatus(request.status) == PIRStatus.FLAGGED
        assert ResponseStatus(late.status) == ResponseStatus.DRAFT

    def test_review_proceeds_without_the_unsubmitted_answer(self, db, flagged_with_late_answer, customer_ctx):
        request, a, c, late = flagged_with_late_answer

        outcome = review_service.submit_review(db, request, [ReviewDecision(c.id, APPROVE)], customer_ctx)

        assert outcome.pir_status == PIRStatus.APPROVED
        assert sorted(outcome.approved_ids) == sorted([a.id, c.id])
        assert ResponseStatus(late.status) == ResponseStatus.DRAFT
