import json
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from memora.analytics import (
	dashboard_stats,
	format_file_size,
	format_time_ago,
	insight_payload,
	progress_attempts,
	progress_statistics,
)
from memora.models import UploadedFile
from memora.quiz_session import start_or_resume, submit_attempt

NOW = datetime(2024, 5, 20, 12, 0, 0)


def attempt(score, subject=None, time_taken=60, title="Quiz", days_ago=0):
	return SimpleNamespace(
		score=score,
		time_taken=time_taken,
		completed_at=NOW - timedelta(days=days_ago),
		quiz=SimpleNamespace(subject=subject, title=title),
	)


@pytest.mark.parametrize("delta,expected", [
	(timedelta(seconds=20), "Just now"),
	(timedelta(seconds=90), "1 minute ago"),
	(timedelta(hours=2), "2 hours ago"),
	(timedelta(days=8), "1 week ago"),
])
def test_format_time_ago(delta, expected):
	assert format_time_ago(NOW - delta, NOW) == expected


@pytest.mark.parametrize("size,expected", [(0, "0 Bytes"), (500, "500 Bytes"), (1536, "1.5 KB"), (3 * 1024 ** 2, "3 MB")])
def test_format_file_size(size, expected):
	assert format_file_size(size) == expected


def test_statistics_empty():
	stats = progress_statistics([])
	assert stats["totalAttempts"] == 0
	assert stats["strongSubjects"] == []


def test_statistics_improvement_and_subjects():
	attempts = [
		attempt(90, "Biology", 120),
		attempt(80, "Chemistry", 60),
		attempt(60, "Biology", 60),
		attempt(50, None, 40),
	]
	stats = progress_statistics(attempts)
	assert stats["totalAttempts"] == 4
	assert stats["averageScore"] == 70
	assert stats["averageTime"] == 70
	assert stats["improvement"] == 30
	assert stats["strongSubjects"] == ["Chemistry", "Biology"]
	assert stats["weakSubjects"] == ["General", "Biology"]


def test_no_improvement_with_few_attempts():
	assert progress_statistics([attempt(100), attempt(0), attempt(50)])["improvement"] == 0


def test_insight_payload_groups_by_subject():
	attempts = [attempt(90, "Biology", 120, "Cells"), attempt(70, "Biology", 240, "Genes")]
	payload = insight_payload(attempts, progress_statistics(attempts))
	assert payload["subjectPerformance"] == {"Biology": {"avgScore": 80, "avgTime": 3, "totalAttempts": 2}}
	assert payload["recentScores"][0]["title"] == "Cells"
	json.dumps(payload)


def test_dashboard_stats(db, make_quiz):
	quiz = make_quiz(subject="Biology")
	quiz.created_at = NOW - timedelta(days=1)
	db.commit()
	q1, q2 = [q.id for q in quiz.questions]
	for i, answers in enumerate([{q1: "Mitochondria", q2: "nucleus"}, {q1: "Nucleus", q2: "nucleus"}]):
		started = NOW - timedelta(hours=3 - i)
		start_or_resume(db, quiz.user_id, quiz, now=started)
		submit_attempt(db, quiz.user_id, quiz, answers, now=started + timedelta(minutes=5))
	db.add(UploadedFile(
		user_id=quiz.user_id, original_name="cells.pdf", filename="1-2.pdf",
		file_path="/tmp/1-2.pdf", file_size=2048, created_at=NOW - timedelta(minutes=5),
	))
	db.commit()

	stats = dashboard_stats(db, quiz.user_id, now=NOW)
	assert stats["totalQuizzes"] == 1
	assert stats["completedQuizzes"] == 2
	assert stats["averageScore"] == 75
	assert stats["accuracy"] == 75
	recent = stats["recentQuizScore"]
	assert recent["score"] == 50
	assert recent["percentageChange"] == -50
	kinds = [a["type"] for a in stats["recentActivities"]]
	assert kinds[0] == "file_uploaded"
	assert "2 KB" in stats["recentActivities"][0]["description"]
	assert kinds.count("quiz_completed") == 2


def test_progress_range_filter(db, make_quiz):
	quiz = make_quiz()
	q1, q2 = [q.id for q in quiz.questions]
	for days in (40, 10, 1):
		started = NOW - timedelta(days=days)
		start_or_resume(db, quiz.user_id, quiz, now=started)
		submit_attempt(db, quiz.user_id, quiz, {q1: "Mitochondria", q2: "nucleus"}, now=started + timedelta(minutes=1))
	assert len(progress_attempts(db, quiz.user_id, "week", now=NOW)) == 1
	assert len(progress_attempts(db, quiz.user_id, "month", now=NOW)) == 2
	assert len(progress_attempts(db, quiz.user_id, "all", now=NOW)) == 3


def test_dashboard_api_for_new_user(client, auth_headers):
	stats = client.get("/api/dashboard/stats", headers=auth_headers).json()
	assert stats["totalQuizzes"] == 0
	assert stats["averageScore"] == 0
	assert stats["recentQuizScore"] is None
	assert stats["recentActivities"] == []


def test_progress_api_and_insights(client, auth_headers, fake_gemini):
	r = client.get("/api/progress/stats?range=week", headers=auth_headers)
	assert r.status_code == 200
	assert r.json()["statistics"]["totalAttempts"] == 0
	assert client.get("/api/progress/stats?range=decade", headers=auth_headers).status_code == 422
	assert client.post("/api/progress/ai-insights", headers=auth_headers).status_code == 400


def test_ai_insights_with_attempts(client, auth_headers, fake_gemini):
	up = client.post(
		"/api/quiz/upload", files=[("files", ("n.txt", b"Mitochondria produce ATP.", "text/plain"))], headers=auth_headers
	).json()["files"][0]
	fake_gemini.queue(json.dumps([{
		"question_text": "What produces ATP?",
		"question_type": "multiple-choice",
		"options": ["Mitochondria", "Nucleus"],
		"correct_answer": "Mitochondria",
		"explanation": "",
	}]))
	quiz_id = client.post(
		"/api/quiz/generate", json={"fileIds": [up["id"]], "numQuestions": 1}, headers=auth_headers
	).json()["quizId"]
	qid = client.post(f"/api/quiz/{quiz_id}/start", headers=auth_headers).json()["quiz"]["questions"][0]["id"]
	client.post(
		f"/api/quiz/{quiz_id}/submit",
		json={"answers": [{"question_id": qid, "user_answer": "Mitochondria"}]},
		headers=auth_headers,
	)

	stats = client.get("/api/progress/stats", headers=auth_headers).json()
	assert stats["statistics"]["averageScore"] == 100
	assert stats["statistics"]["strongSubjects"] == ["General"]

	fake_gemini.queue('```json\n{"overallAnalysis": "Great start.", "strengths": ["ATP"], "weaknesses": [], "recommendations": ["Keep going"],}\n```')
	insights = client.post("/api/progress/ai-insights?range=all", headers=auth_headers).json()
	assert insights["overallAnalysis"] == "Great start."
	assert insights["recommendations"] == ["Keep going"]
	assert '"averageScore": 100' in fake_gemini.prompts[-1]
