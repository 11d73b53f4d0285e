"""
Clarity Service - Conversation Miscommunication Analysis
========================================================

A FastAPI service for:
1. Parsing text or screenshot conversations into speakers and messages
2. Detecting miscommunications (assumption gaps, ambiguity, tone, implicit meaning)
3. Metering analyses per subscription plan and sharing results via public links
"""

__version__ = "1.0.0"
