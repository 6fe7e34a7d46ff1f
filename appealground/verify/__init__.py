"""
appealground Verification
==========================

Mechanical grounding checks over assembled letter sections.

Components:
    - grounding.py: numeric-claim detection, citation coverage, NEEDS
      EVIDENCE patching and evidence-gap collection
"""
