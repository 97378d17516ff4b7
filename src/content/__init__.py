"""Quiz and summary document entities built by the generation workflow.

- schemas: Quiz, SummaryDocument, and the QuizContent generation schema
- quiz_store: Quiz persistence
- summary_store: Summary document persistence
"""
