# ==== BUSINESS LOGIC PACKAGE ==== #

"""
Business logic package for the claim approval workflow.

This package contains the pure domain rules of the workflow: claim statuses,
audit action kinds, roles and identities, the transition table, the
permission matrix and the error taxonomy. Nothing in here performs I/O.
"""
