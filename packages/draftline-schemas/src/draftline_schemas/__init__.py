"""draftline-schemas: Shared Pydantic models for draftline."""
