"""
WSGI / Flask CLI entry point.

Usage:
    FLASK_APP=wsgi flask seed-stages
    FLASK_APP=wsgi flask sla-check
"""

from casedesk import create_app

app = create_app()
