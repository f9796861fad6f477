"""Test suite for cardview_state.

This package contains tests for validation, migration, the backup ring, the
error/retry policy, the persistence façade and both host storage backends.
"""
