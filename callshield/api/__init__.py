# callshield/api/__init__.py
# ===========================
# API Layer — CallShield
#
# FastAPI surface over per-call analysis sessions (sessions.py).
# Served as main:app (see main.py).
