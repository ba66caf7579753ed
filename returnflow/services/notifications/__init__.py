"""Transactional email notifications."""
