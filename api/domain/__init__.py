# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the welfare case engine.

This package contains the region hierarchy, permission catalog, role and
binding rules, the permission resolver and the application state machine.
Domain functions take every collaborator as an argument and have no side
effects, so they are testable without external services.
"""
