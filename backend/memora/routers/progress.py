import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..analytics import insight_payload, progress_attempts, progress_statistics
from ..db import get_db
from ..gemini_client import GeminiClient
from ..llm_json import extract_json_object
from ..serializers import attempt_dict
from .auth import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progress", tags=["progress"])

RANGE_PATTERN = "^(week|month|all)$"

INSIGHT_KEYS = ("overallAnalysis", "strengths", "weaknesses", "recommendations")
INSIGHT_CONFIG = {"temperature": 0.7, "maxOutputTokens": 2048, "responseMimeType": "application/json"}


def build_insight_prompt(payload: dict) -> str:
	return f"""You are an educational AI assistant analyzing a student's learning progress. Based on the following data, provide personalized insights:

Student Progress Data:
{json.dumps(payload, indent=2)}

Respond ONLY with valid JSON in this shape, no markdown or additional text:

{{
  "overallAnalysis": "A 2-3 sentence summary of the student's overall learning journey and progress",
  "strengths": ["Specific strength with evidence from the data", "..."],
  "weaknesses": ["Specific area for improvement with evidence", "..."],
  "recommendations": ["Actionable recommendation based on the data", "..."]
}}

Give three strengths, three weaknesses and four recommendations. Be specific, actionable and encouraging, and use the actual numbers above."""


async def _ask_for_insights(prompt: str) -> str:
	client = GeminiClient()
	try:
		return await client.generate(prompt, generation_config=INSIGHT_CONFIG)
	finally:
		await client.aclose()


@router.get("/stats")
async def stats(
	range: str = Query("all", pattern=RANGE_PATTERN),
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	attempts = progress_attempts(db, user.id, range)
	return {"attempts": [attempt_dict(a) for a in attempts], "statistics": progress_statistics(attempts)}


@router.post("/ai-insights")
async def ai_insights(
	range: str = Query("all", pattern=RANGE_PATTERN),
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	attempts = progress_attempts(db, user.id, range)
	if not attempts:
		raise HTTPException(status_code=400, detail="No progress data available")
	payload = insight_payload(attempts, progress_statistics(attempts))

	try:
		insights = extract_json_object(await _ask_for_insights(build_insight_prompt(payload)))
	except Exception as e:
		logger.error("Failed to generate AI insights for user %s: %s", user.id, e)
		raise HTTPException(status_code=500, detail=f"Failed to generate AI insights: {e}")

	missing = [k for k in INSIGHT_KEYS if k not in insights]
	if missing:
		raise HTTPException(status_code=500, detail=f"Failed to generate AI insights: missing {', '.join(missing)}")
	return {k: insights[k] for k in INSIGHT_KEYS}
