# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

This package contains middleware components for authentication and
problem-document error responses in the Bendrija governance API.
"""
