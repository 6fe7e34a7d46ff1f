"""
appealground Rendering
=======================

Turns a denial case and its retrieved evidence into an argument plan
and a verified, citation-grounded appeal letter.

Components:
    - plan.py:   Thesis and argument plan per denial category
    - letter.py: Section assembly, citations, verification, checklist
"""
