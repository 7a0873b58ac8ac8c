# ==== SERVICES PACKAGE ==== #

"""
Services package for the claim workflow.

This package contains the workflow engine that applies claim commands
atomically and the read-only query views over the claim store.
"""
