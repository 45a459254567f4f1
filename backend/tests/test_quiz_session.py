from datetime import datetime, timedelta

import pytest

from memora.cleanup import purge_stale_progress, run_housekeeping
from memora.errors import IncompleteAnswersError, QuizSessionError
from memora.models import QuizAttempt, QuizProgress, QuizQuestion
from memora.quiz_session import (
	finalize_expired_sessions,
	grade_answer,
	round_half_up,
	save_progress,
	seconds_remaining,
	start_or_resume,
	submit_attempt,
)

T0 = datetime(2024, 3, 1, 9, 0, 0)


def ids(quiz):
	return [q.id for q in quiz.questions]


@pytest.mark.parametrize("value,expected", [(2.5, 3), (66.666, 67), (0.5, 1), (49.4, 49), (0, 0)])
def test_round_half_up(value, expected):
	assert round_half_up(value) == expected


def test_fill_blank_grading_ignores_case_and_spacing():
	q = QuizQuestion(question_type="fill-blank", correct_answer="Cell  membrane")
	assert grade_answer(q, "  cell membrane ")
	assert not grade_answer(q, "cell wall")
	assert not grade_answer(q, "")


def test_multiple_choice_grading_is_exact():
	q = QuizQuestion(question_type="multiple-choice", correct_answer="Mitochondria")
	assert grade_answer(q, " Mitochondria ")
	assert not grade_answer(q, "mitochondria")


def test_start_creates_timed_session(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	outcome = start_or_resume(db, quiz.user_id, quiz, now=T0)
	assert not outcome.expired
	assert outcome.progress.start_time == T0
	assert outcome.progress.time_remaining == 600


def test_resume_keeps_start_time_and_counts_down(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	first = start_or_resume(db, quiz.user_id, quiz, now=T0).progress
	again = start_or_resume(db, quiz.user_id, quiz, now=T0 + timedelta(minutes=4)).progress
	assert again.id == first.id
	assert again.start_time == T0
	assert again.time_remaining == 360


def test_seconds_remaining_rounds_up():
	class Timed:
		time_limit = 1
	assert seconds_remaining(Timed(), T0, T0 + timedelta(seconds=0.5)) == 60
	assert seconds_remaining(Timed(), T0, T0 + timedelta(minutes=5)) == 0


def test_untimed_session_has_no_clock(db, make_quiz):
	quiz = make_quiz()
	progress = start_or_resume(db, quiz.user_id, quiz, now=T0).progress
	assert progress.time_remaining is None


def test_autosave_merges_and_clamps(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, q2 = ids(quiz)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	save_progress(db, quiz.user_id, quiz, {q1: "Nucleus", "bogus": "x"}, 0, now=T0 + timedelta(minutes=1))
	outcome = save_progress(
		db, quiz.user_id, quiz, {q2: "nucleus"},
		current_question_index=99,
		time_remaining=300,
		now=T0 + timedelta(minutes=2),
	)
	progress = outcome.progress
	assert progress.answer_map == {q1: "Nucleus", q2: "nucleus"}
	assert progress.current_question_index == 1
	# Client reported less time than the server clock allows
	assert progress.time_remaining == 300


def test_autosave_cannot_extend_the_clock(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	outcome = save_progress(db, quiz.user_id, quiz, {}, time_remaining=3600, now=T0 + timedelta(minutes=8))
	assert outcome.progress.time_remaining == 120


def test_submit_requires_every_answer(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, q2 = ids(quiz)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	with pytest.raises(IncompleteAnswersError) as exc:
		submit_attempt(db, quiz.user_id, quiz, {q1: "Mitochondria"}, now=T0 + timedelta(minutes=3))
	assert exc.value.missing == [q2]
	assert db.query(QuizAttempt).count() == 0


def test_submit_grades_and_closes_session(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, q2 = ids(quiz)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	save_progress(db, quiz.user_id, quiz, {q1: "Mitochondria"}, now=T0 + timedelta(minutes=1))
	attempt = submit_attempt(
		db, quiz.user_id, quiz, {q2: " Nucleus "},
		time_spent={q1: 40, q2: 25},
		now=T0 + timedelta(minutes=3),
	)
	assert attempt.score == 100
	assert attempt.correct_answers == 2
	assert attempt.time_taken == 180
	assert attempt.started_at == T0
	assert not attempt.forced_by_timer
	assert sorted(a.time_spent for a in attempt.answers) == [25, 40]
	progress = db.query(QuizProgress).one()
	assert progress.is_completed
	assert progress.attempt_id == attempt.id


def test_client_start_time_cannot_override_saved_session(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, q2 = ids(quiz)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	attempt = submit_attempt(
		db, quiz.user_id, quiz, {q1: "Nucleus", q2: "cytoplasm"},
		started_at=T0 + timedelta(minutes=2),
		now=T0 + timedelta(minutes=5),
	)
	assert attempt.started_at == T0
	assert attempt.score == 0


def test_late_autosave_submits_on_students_behalf(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, _ = ids(quiz)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	outcome = save_progress(db, quiz.user_id, quiz, {q1: "Mitochondria"}, now=T0 + timedelta(minutes=11))
	assert outcome.expired
	attempt = outcome.attempt
	assert attempt.forced_by_timer
	assert attempt.score == 50
	assert attempt.completed_at == T0 + timedelta(minutes=10)
	assert attempt.time_taken == 600


def test_resume_after_deadline_returns_attempt(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	outcome = start_or_resume(db, quiz.user_id, quiz, now=T0 + timedelta(hours=1))
	assert outcome.expired
	assert outcome.attempt.score == 0
	# A fresh session starts on the next open
	again = start_or_resume(db, quiz.user_id, quiz, now=T0 + timedelta(hours=2))
	assert not again.expired
	assert again.progress.start_time == T0 + timedelta(hours=2)


def test_force_flag_honoured_only_near_deadline(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	with pytest.raises(IncompleteAnswersError):
		submit_attempt(db, quiz.user_id, quiz, {}, force=True, now=T0 + timedelta(minutes=5))
	attempt = submit_attempt(db, quiz.user_id, quiz, {}, force=True, now=T0 + timedelta(minutes=10) - timedelta(seconds=3))
	assert attempt.forced_by_timer
	assert attempt.time_taken == 597


def test_force_flag_ignored_for_untimed_quiz(db, make_quiz):
	quiz = make_quiz()
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	with pytest.raises(IncompleteAnswersError):
		submit_attempt(db, quiz.user_id, quiz, {}, force=True, now=T0 + timedelta(days=1))


def test_housekeeping_finalizes_abandoned_timed_sessions(db, make_quiz):
	timed = make_quiz(time_limit=10)
	untimed = make_quiz()
	q1, _ = ids(timed)
	start_or_resume(db, timed.user_id, timed, now=T0)
	save_progress(db, timed.user_id, timed, {q1: "Mitochondria"}, now=T0 + timedelta(minutes=2))
	start_or_resume(db, untimed.user_id, untimed, now=T0)

	assert finalize_expired_sessions(db, now=T0 + timedelta(minutes=10, seconds=1)) == 0
	assert finalize_expired_sessions(db, now=T0 + timedelta(minutes=20)) == 1

	attempt = db.query(QuizAttempt).one()
	assert attempt.quiz_id == timed.id
	assert attempt.forced_by_timer
	assert attempt.score == 50
	open_rows = db.query(QuizProgress).filter(QuizProgress.is_completed.is_(False)).all()
	assert [p.quiz_id for p in open_rows] == [untimed.id]


def test_purge_only_touches_stale_untimed_progress(db, make_quiz):
	timed = make_quiz(time_limit=10)
	untimed = make_quiz()
	fresh = make_quiz()
	start_or_resume(db, timed.user_id, timed, now=T0 - timedelta(days=8))
	start_or_resume(db, untimed.user_id, untimed, now=T0 - timedelta(days=8))
	start_or_resume(db, fresh.user_id, fresh, now=T0 - timedelta(days=1))

	assert purge_stale_progress(db, now=T0) == 1
	assert {p.quiz_id for p in db.query(QuizProgress).all()} == {timed.id, fresh.id}


def test_run_housekeeping_reports_counts(db, make_quiz):
	quiz = make_quiz(time_limit=5)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	assert run_housekeeping(db, now=T0 + timedelta(hours=1)) == {"finalized": 1, "purged": 0}


def test_autosave_after_forced_submit_returns_that_attempt(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, _ = ids(quiz)
	start_or_resume(db, quiz.user_id, quiz, now=T0)
	forced = save_progress(db, quiz.user_id, quiz, {q1: "Mitochondria"}, now=T0 + timedelta(minutes=11)).attempt

	# A save the browser queued before it saw the result
	stale = save_progress(db, quiz.user_id, quiz, {q1: "Nucleus"}, now=T0 + timedelta(minutes=12))
	assert stale.expired
	assert stale.attempt.id == forced.id
	assert stale.attempt.score == 50
	assert db.query(QuizProgress).filter(QuizProgress.is_completed.is_(False)).count() == 0
	assert db.query(QuizAttempt).count() == 1


def test_autosave_without_session_is_refused(db, make_quiz):
	quiz = make_quiz(time_limit=10)
	q1, _ = ids(quiz)
	with pytest.raises(QuizSessionError):
		save_progress(db, quiz.user_id, quiz, {q1: "Mitochondria"}, now=T0)
	assert db.query(QuizProgress).count() == 0
