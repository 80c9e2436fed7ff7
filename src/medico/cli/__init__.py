"""Medico command line interface."""
