"""Operator command-line tools (installed as ``acredita-*`` console scripts)."""
