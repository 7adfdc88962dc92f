"""Exam accountability coach: chat turns, check-ins and stats over a REST API."""
