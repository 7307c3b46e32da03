"""Shared core for the chess opening recommender backend."""
