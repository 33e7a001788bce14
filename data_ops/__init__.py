"""
Data tool engines for chat attachments.

Provides CSV parsing and the tabular tool catalog, JSON record tools,
the image generation tool, attachment ingestion and the tagged
tool-result type.
"""
