"""
Resumable app review collection.

Discovery paginates a catalog search listing into a list of apps; collection
paginates each app's reviews, checkpointing after every app so an
interrupted run picks up where it stopped. See gleaner.pipeline for the
entry point.
"""

__version__ = "0.1.0"
