"""Book catalogue routes: browse, detail, reader contributions, search and media."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from book_media import get_book_media
from book_search import public_book, search_books
from contributions import submit_book, submit_content, submit_questions
from db_stores import BookContentStoreDB, BookStoreDB, ContributionStoreDB, UserQuestionStoreDB
from errors import BookNotFoundError, ValidationFailedError
from extensions import function_endpoint
from helpers import current_user_id, int_arg, json_body

bp = Blueprint("books", __name__)


@bp.route("/api/books")
def api_books():
    age = request.args.get("age")
    if age is not None:
        age = int_arg({"age": age}, "age", 0, minimum=0, maximum=18)
    limit = int_arg(request.args, "limit", 50, minimum=1, maximum=200)
    return jsonify({"books": [public_book(b) for b in BookStoreDB.for_age(age, limit)]})


@bp.route("/api/books/popular")
def api_popular_books():
    limit = int_arg(request.args, "limit", 10, minimum=1, maximum=50)
    books = []
    for book in BookStoreDB.popular(limit):
        entry = public_book(book)
        entry["times_completed"] = book["times_completed"]
        books.append(entry)
    return jsonify({"books": books})


@bp.route("/api/books/<book_id>")
def api_book_detail(book_id):
    book = BookStoreDB.get(book_id)
    if not book:
        raise BookNotFoundError(book_id)
    content = BookContentStoreDB.latest_approved(book_id)
    return jsonify({
        "book": {
            **public_book(book),
            "isbn": book.get("isbn") or None,
            "description": content["description"] if content else None,
            "subjects": content["subjects"] if content else [],
        },
    })


# ── Contributions ───────────────────────────────────────────

@bp.route("/api/books/<book_id>/content", methods=["POST"])
@login_required
def api_contribute_content(book_id):
    """Submit a description for a book. Admin submissions are approved immediately."""
    data = json_body()
    result = submit_content(current_user_id(), book_id, data.get("description"), data.get("subjects"))
    return jsonify(result), 201


@bp.route("/api/books/<book_id>/questions", methods=["POST"])
@login_required
def api_contribute_questions(book_id):
    """Submit 1-10 questions; "None of the above" is appended to each."""
    return jsonify(submit_questions(current_user_id(), book_id, json_body())), 201


@bp.route("/api/books/<book_id>/questions")
def api_community_questions(book_id):
    if not BookStoreDB.get(book_id):
        raise BookNotFoundError(book_id)
    return jsonify({"questions": UserQuestionStoreDB.approved_for_book(book_id)})


@bp.route("/api/contributions/books", methods=["POST"])
@login_required
def api_contribute_book():
    return jsonify(submit_book(current_user_id(), json_body())), 201


@bp.route("/api/me/contributions")
@login_required
def api_my_contributions():
    limit = int_arg(request.args, "limit", 50, minimum=1, maximum=200)
    return jsonify({"contributions": ContributionStoreDB.for_user(current_user_id(), limit)})


# ── Function endpoints ──────────────────────────────────────

@bp.route("/api/functions/search-books", methods=["POST"])
@function_endpoint("search-books")
def fn_search_books():
    data = json_body()
    query = data.get("query", "")
    if not isinstance(query, str):
        raise ValidationFailedError("query must be a string.")
    return jsonify({"books": search_books(query)})


@bp.route("/api/functions/get-book-media", methods=["POST"])
@function_endpoint("get-book-media")
def fn_get_book_media():
    data = json_body()
    book_id = data.get("bookId")
    if not book_id or not isinstance(book_id, str):
        raise ValidationFailedError("bookId is required.")
    return jsonify(get_book_media(book_id))
