"""
Data-access package for the quiz application.

Provides the record store (questions, users, responses and the quiz mode
singleton), a change feed that pushes fresh collections to subscribers,
image storage helpers and a small FastAPI surface over all of it.
"""
