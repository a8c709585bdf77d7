"""
Blueprint registration for Story Quiz.

Blueprints carry full /api/... paths on each route, so none takes a URL prefix.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.books import bp as books_bp
    from blueprints.quiz import bp as quiz_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.guardian import bp as guardian_bp
    from blueprints.admin import bp as admin_bp

    app.register_blueprint(books_bp)
    app.register_blueprint(quiz_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(guardian_bp)
    app.register_blueprint(admin_bp)
