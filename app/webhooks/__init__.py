"""Inbound webhook routes."""
