"""Quiz routes: generation, completion and analytics events."""

from __future__ import annotations

from flask import Blueprint, jsonify

from errors import ValidationFailedError
from events import track
from extensions import function_endpoint
from helpers import current_user_id, int_arg, json_body
from quiz_generation import QuizService
from quiz_player import complete_quiz, start_quiz

bp = Blueprint("quiz", __name__)

DEFAULT_QUESTION_COUNT = 5


def _book_id(data: dict) -> str:
    book_id = data.get("bookId")
    if not book_id or not isinstance(book_id, str):
        raise ValidationFailedError("bookId is required.")
    return book_id


@bp.route("/api/functions/generate-quiz", methods=["POST"])
@function_endpoint("generate-quiz")
def fn_generate_quiz():
    data = json_body()
    result = QuizService().get_quiz(
        _book_id(data),
        int_arg(data, "numQuestions", DEFAULT_QUESTION_COUNT),
        str(data.get("difficulty", "medium")),
    )
    return jsonify(result.to_dict())


@bp.route("/api/quiz/start", methods=["POST"])
def api_start_quiz():
    data = json_body()
    recorded = start_quiz(current_user_id(), _book_id(data), str(data.get("difficulty", "medium")))
    return jsonify({"recorded": recorded}), 201


@bp.route("/api/quiz/complete", methods=["POST"])
def api_complete_quiz():
    """Record a finished attempt. Anonymous players get results without stats."""
    data = json_body()
    result = complete_quiz(
        current_user_id(),
        _book_id(data),
        str(data.get("difficulty", "")),
        data.get("score"),
        data.get("totalQuestions"),
    )
    return jsonify(result)


@bp.route("/api/events", methods=["POST"])
def api_events():
    payload = dict(json_body())
    uid = current_user_id()
    if uid is not None:
        payload["user_id"] = uid
    return jsonify({"recorded": track(payload)}), 201
