"""Tests for enrichment.py: cover/description enrichment and batch quiz pre-generation."""

import pytest

import book_sources
from conftest import GRUFFALO_ID, OWL_BABIES_ID, WILD_THINGS_ID, quiz_json
from db_stores import BookContentStoreDB, BookStoreDB, QuizTemplateStoreDB
from enrichment import BATCH_QUESTION_COUNT, batch_generate_quizzes, enrich_book, enrich_books
from errors import UpstreamServiceError, ValidationFailedError

OWL_DESCRIPTION = "Three baby owls wake up one night and find their mother gone. They wait for her to come home."


@pytest.fixture
def google_volume(monkeypatch):
    """A single Google Books volume returned for every query."""
    volume = {}
    monkeypatch.setattr(book_sources, "google_books_search", lambda query, max_results=5: [volume])
    return volume


class TestEnrichBook:
    def test_cover_from_open_library_record(self, app, monkeypatch):
        monkeypatch.setattr(book_sources, "open_library_record", lambda olid: {"covers": [-1, 12345]})
        with app.app_context():
            result = enrich_book(BookStoreDB.get(GRUFFALO_ID))
            assert result["success"] is True
            assert result["cover_url"] == "https://covers.openlibrary.org/b/id/12345-L.jpg"
            assert result["sources_used"] == ["open_library_works"]
            # Curated content already exists, so no description step
            assert "description" not in result

            book = BookStoreDB.get(GRUFFALO_ID)
            assert book["cover_url"].endswith("12345-L.jpg")
            assert book["enrichment_status"] == "enriched"

    def test_google_thumbnail_forced_to_https_and_description_stored(self, app, google_volume):
        google_volume.update({
            "imageLinks": {"thumbnail": "http://books.google.com/books/content?id=owl"},
            "description": OWL_DESCRIPTION,
        })
        with app.app_context():
            result = enrich_book(BookStoreDB.get(OWL_BABIES_ID), admin_id=3)
            assert result["cover_url"] == "https://books.google.com/books/content?id=owl"
            assert result["description"] == OWL_DESCRIPTION
            assert result["sources_used"] == ["google_books"]

            content = BookContentStoreDB.latest_approved(OWL_BABIES_ID)
            assert content["description"] == OWL_DESCRIPTION
            assert content["source"] == "enrichment"
            assert content["submitted_by"] == 3

    def test_open_library_description_after_google(self, app, monkeypatch):
        monkeypatch.setattr(book_sources, "open_library_record",
                            lambda olid: {"description": {"value": "Max sails to where the wild things are."}})
        with app.app_context():
            BookStoreDB.update(WILD_THINGS_ID, open_library_id="/works/OL114396W", cover_url="https://x/c.jpg")
            result = enrich_book(BookStoreDB.get(WILD_THINGS_ID))
            assert result["description"] == "Max sails to where the wild things are."
            assert result["sources_used"] == ["open_library_works"]

    def test_ai_summary_fallback(self, app, fake_llm):
        fake_llm.queue("Owl Babies follows Sarah, Percy and Bill as they wait for their mother.")
        with app.app_context():
            result = enrich_book(BookStoreDB.get(OWL_BABIES_ID))
            assert result["success"] is True
            assert result["sources_used"] == ["ai_summary"]
            assert "Owl Babies" in fake_llm.calls[0]["prompt"]
            assert BookContentStoreDB.latest_approved(OWL_BABIES_ID)["description"].startswith("Owl Babies")

    def test_ai_does_not_know_book(self, app, fake_llm):
        fake_llm.queue("NO_INFO_FOUND")
        with app.app_context():
            result = enrich_book(BookStoreDB.get(OWL_BABIES_ID))
            assert result["success"] is False
            assert BookContentStoreDB.latest_approved(OWL_BABIES_ID) is None
            assert BookStoreDB.get(OWL_BABIES_ID)["enrichment_status"] == "failed"

    def test_source_errors_are_reported(self, app, monkeypatch):
        def _down(query, max_results=5):
            raise UpstreamServiceError("Google Books unavailable")

        monkeypatch.setattr(book_sources, "google_books_search", _down)
        with app.app_context():
            result = enrich_book(BookStoreDB.get(OWL_BABIES_ID))
            assert result["success"] is False
            assert any(e.startswith("google_books_cover") for e in result["errors"])
            assert any(e.startswith("google_books_description") for e in result["errors"])
            assert any(e.startswith("ai_summary") for e in result["errors"])

    def test_existing_cover_kept(self, app, google_volume):
        google_volume["imageLinks"] = {"thumbnail": "http://books.google.com/new"}
        google_volume["description"] = OWL_DESCRIPTION
        with app.app_context():
            BookStoreDB.update(OWL_BABIES_ID, cover_url="https://example.org/owl.jpg")
            result = enrich_book(BookStoreDB.get(OWL_BABIES_ID))
            assert "cover_url" not in result
            assert BookStoreDB.get(OWL_BABIES_ID)["cover_url"] == "https://example.org/owl.jpg"


class TestEnrichBooks:
    def test_default_selects_books_needing_enrichment(self, app):
        with app.app_context():
            summary = enrich_books()
            assert summary["success"] is True
            assert {r["book_id"] for r in summary["results"]} == {GRUFFALO_ID, OWL_BABIES_ID, WILD_THINGS_ID}
            assert summary["enriched_count"] == 0
            assert summary["failed_count"] == 3

    def test_explicit_ids_skip_unknown(self, app, google_volume):
        google_volume["description"] = OWL_DESCRIPTION
        with app.app_context():
            summary = enrich_books(book_ids=[OWL_BABIES_ID, "missing"])
            assert [r["book_id"] for r in summary["results"]] == [OWL_BABIES_ID]
            assert summary["enriched_count"] == 1

    def test_book_ids_must_be_list(self, app):
        with app.app_context():
            with pytest.raises(ValidationFailedError):
                enrich_books(book_ids=OWL_BABIES_ID)

    def test_endpoint_requires_admin(self, auth_client):
        assert auth_client.post("/api/functions/enrich-book-data", json={}).status_code == 403

    def test_endpoint(self, admin_client, google_volume):
        google_volume["description"] = OWL_DESCRIPTION
        resp = admin_client.post("/api/functions/enrich-book-data", json={"book_id": OWL_BABIES_ID})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["enriched_count"] == 1
        assert data["results"][0]["description"] == OWL_DESCRIPTION


class TestBatchGenerate:
    def test_generates_every_difficulty(self, app, fake_llm):
        fake_llm.default = quiz_json(BATCH_QUESTION_COUNT)
        with app.app_context():
            summary = batch_generate_quizzes()
            assert summary["books_processed"] == 1
            assert summary["quizzes_generated"] == 3
            assert summary["books_with_new_quizzes"] == 1
            assert summary["results"][0]["difficulties"] == ["easy", "medium", "hard"]
            assert QuizTemplateStoreDB.difficulties_for(GRUFFALO_ID, BATCH_QUESTION_COUNT) == {
                "easy", "medium", "hard",
            }
            assert len(QuizTemplateStoreDB.get(GRUFFALO_ID, "9-10", BATCH_QUESTION_COUNT)["questions"]) == 10

    def test_existing_difficulties_skipped(self, app, fake_llm):
        fake_llm.default = quiz_json(BATCH_QUESTION_COUNT)
        with app.app_context():
            QuizTemplateStoreDB.save(GRUFFALO_ID, "5-6", "easy", BATCH_QUESTION_COUNT,
                                     [{"text": "Q?", "options": ["a", "b", "c"], "correct_index": 0}])
            summary = batch_generate_quizzes()
            assert summary["results"][0]["difficulties"] == ["medium", "hard"]
            assert len(fake_llm.calls) == 2

            assert batch_generate_quizzes()["quizzes_generated"] == 0

    def test_errors_counted_and_batch_continues(self, app, fake_llm):
        fake_llm.queue("not a quiz at all")
        fake_llm.default = quiz_json(BATCH_QUESTION_COUNT)
        with app.app_context():
            summary = batch_generate_quizzes()
            entry = summary["results"][0]
            assert entry["difficulties"] == ["medium", "hard"]
            assert entry["errors"][0].startswith("easy:")
            assert summary["books_with_errors"] == 1

    def test_books_without_content_skipped(self, app, fake_llm):
        fake_llm.default = quiz_json(BATCH_QUESTION_COUNT)
        with app.app_context():
            summary = batch_generate_quizzes(limit=10)
            assert [r["book_id"] for r in summary["results"]] == [GRUFFALO_ID]

    def test_endpoint(self, admin_client, fake_llm):
        fake_llm.default = quiz_json(BATCH_QUESTION_COUNT)
        resp = admin_client.post("/api/functions/batch-generate-quizzes", json={"limit": 5})
        assert resp.status_code == 200
        assert resp.get_json()["quizzes_generated"] == 3

    def test_endpoint_validates_limit(self, admin_client):
        resp = admin_client.post("/api/functions/batch-generate-quizzes", json={"limit": 0})
        assert resp.status_code == 400
