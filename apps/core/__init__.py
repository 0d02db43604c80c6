"""
Core building blocks shared by the Matchmaker apps: base model, exceptions,
logging, request tracing and DRF authentication.
"""
