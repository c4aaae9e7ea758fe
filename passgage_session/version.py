"""Passgage Session Meta information.
   Passgage Session keeps per-user Passgage credentials encrypted on the
   server and resolves stateless requests back to the right identity.
"""
__title__ = 'passgage_session'
__description__ = (
   'Multi-tenant session and credential broker '
   'for the Passgage workforce-management API.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
