"""Bluetooth relay link management."""
