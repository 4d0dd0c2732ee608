"""Deliberation panels for citation validation.

Stages:
  panel       Stage 2: five validators score the citation in parallel
  escalation  Stage 3: three investigators re-examine disputed citations
"""
